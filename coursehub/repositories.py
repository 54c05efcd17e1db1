"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
classes, projects, strengths, groups, tasks, activity). Repositories
return SQLModel objects and perform commits/refreshes where appropriate.
"""

from typing import Dict, Iterable, List, Optional, Tuple
from sqlmodel import Session, select
from sqlalchemy import func
from . import models


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email or `None` if not found."""
        stmt = select(models.User).where(models.User.email == email)
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def save(self, user: models.User) -> models.User:
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user


class ClassRepository:
    """Classes and their memberships."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, cls: models.ClassRoom) -> models.ClassRoom:
        self.session.add(cls)
        self.session.commit()
        self.session.refresh(cls)
        return cls

    def get(self, class_id: int) -> Optional[models.ClassRoom]:
        return self.session.get(models.ClassRoom, class_id)

    def get_by_code(self, code: str) -> Optional[models.ClassRoom]:
        stmt = select(models.ClassRoom).where(models.ClassRoom.code == code)
        return self.session.exec(stmt).first()

    def code_exists(self, code: str) -> bool:
        stmt = select(models.ClassRoom.id).where(models.ClassRoom.code == code)
        return self.session.exec(stmt).first() is not None

    def list_for_professor(self, professor_id: int) -> List[models.ClassRoom]:
        """Classes owned by a professor, newest first."""
        stmt = (
            select(models.ClassRoom)
            .where(models.ClassRoom.professor_id == professor_id)
            .order_by(models.ClassRoom.created_at.desc(), models.ClassRoom.id.desc())
        )
        return self.session.exec(stmt).all()

    def list_for_member(self, user_id: int) -> List[models.ClassRoom]:
        stmt = (
            select(models.ClassRoom)
            .join(models.ClassMember, models.ClassMember.class_id == models.ClassRoom.id)
            .where(models.ClassMember.user_id == user_id)
            .order_by(models.ClassMember.id)
        )
        return self.session.exec(stmt).all()

    def get_membership(self, class_id: int, user_id: int) -> Optional[models.ClassMember]:
        stmt = select(models.ClassMember).where(
            models.ClassMember.class_id == class_id,
            models.ClassMember.user_id == user_id,
        )
        return self.session.exec(stmt).first()

    def add_member(self, class_id: int, user_id: int, role: str) -> models.ClassMember:
        """Upsert a membership row for `user_id` in `class_id`."""
        member = self.get_membership(class_id, user_id)
        if member:
            member.role = role
        else:
            member = models.ClassMember(class_id=class_id, user_id=user_id, role=role)
        self.session.add(member)
        self.session.commit()
        self.session.refresh(member)
        return member

    def count_members(self, class_id: int) -> int:
        stmt = select(func.count(models.ClassMember.id)).where(models.ClassMember.class_id == class_id)
        return self.session.exec(stmt).one()

    def list_students(self, class_id: int) -> List[models.User]:
        """Student users of a class in the order they joined."""
        stmt = (
            select(models.User)
            .join(models.ClassMember, models.ClassMember.user_id == models.User.id)
            .where(models.ClassMember.class_id == class_id, models.ClassMember.role == "student")
            .order_by(models.ClassMember.id)
        )
        return self.session.exec(stmt).all()


class ProjectRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(self, project: models.Project) -> models.Project:
        self.session.add(project)
        self.session.commit()
        self.session.refresh(project)
        return project

    def get(self, project_id: int) -> Optional[models.Project]:
        return self.session.get(models.Project, project_id)

    def list_for_class(self, class_id: int) -> List[models.Project]:
        """Projects of a class ordered by due date (undated last)."""
        stmt = (
            select(models.Project)
            .where(models.Project.class_id == class_id)
            .order_by(models.Project.due_date.is_(None), models.Project.due_date, models.Project.id)
        )
        return self.session.exec(stmt).all()

    def names_by_id(self, project_ids: Iterable[int]) -> Dict[int, str]:
        ids = list(set(project_ids))
        if not ids:
            return {}
        stmt = select(models.Project).where(models.Project.id.in_(ids))
        return {p.id: p.name for p in self.session.exec(stmt).all()}


class StrengthRepository:
    """Survey ratings per student."""
    def __init__(self, session: Session):
        self.session = session

    def get_for_user(self, user_id: int) -> Optional[models.StudentStrength]:
        stmt = select(models.StudentStrength).where(models.StudentStrength.user_id == user_id)
        return self.session.exec(stmt).first()

    def list_for_users(self, user_ids: Iterable[int]) -> Dict[int, models.StudentStrength]:
        ids = list(user_ids)
        if not ids:
            return {}
        stmt = select(models.StudentStrength).where(models.StudentStrength.user_id.in_(ids))
        return {s.user_id: s for s in self.session.exec(stmt).all()}

    def upsert(self, strength: models.StudentStrength) -> models.StudentStrength:
        """Insert or update the ratings row for `strength.user_id`."""
        existing = self.get_for_user(strength.user_id)
        if existing:
            existing.research_rating = strength.research_rating
            existing.writing_rating = strength.writing_rating
            existing.design_rating = strength.design_rating
            existing.technical_rating = strength.technical_rating
            existing.updated_at = strength.updated_at
            strength = existing
        self.session.add(strength)
        self.session.commit()
        self.session.refresh(strength)
        return strength


class GroupRepository:
    """Persisted project groups and their members."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, group_id: int) -> Optional[models.ProjectGroup]:
        return self.session.get(models.ProjectGroup, group_id)

    def list_for_project(self, project_id: int) -> List[models.ProjectGroup]:
        stmt = (
            select(models.ProjectGroup)
            .where(models.ProjectGroup.project_id == project_id)
            .order_by(models.ProjectGroup.position, models.ProjectGroup.id)
        )
        return self.session.exec(stmt).all()

    def list_members(self, group_ids: Iterable[int]) -> List[Tuple[models.GroupMember, models.User]]:
        ids = list(group_ids)
        if not ids:
            return []
        stmt = (
            select(models.GroupMember, models.User)
            .join(models.User, models.User.id == models.GroupMember.user_id)
            .where(models.GroupMember.group_id.in_(ids))
            .order_by(models.GroupMember.id)
        )
        return self.session.exec(stmt).all()

    def replace_for_project(self, project_id: int, groups: List[Tuple[str, List[int]]]) -> List[models.ProjectGroup]:
        """Delete the project's groups and store `groups` (name, member ids) in one commit."""
        for old in self.list_for_project(project_id):
            for member in self.session.exec(
                select(models.GroupMember).where(models.GroupMember.group_id == old.id)
            ).all():
                self.session.delete(member)
            self.session.delete(old)
        self.session.flush()
        created = []
        for position, (name, member_ids) in enumerate(groups):
            group = models.ProjectGroup(project_id=project_id, name=name, position=position)
            self.session.add(group)
            self.session.flush()
            for user_id in member_ids:
                self.session.add(models.GroupMember(group_id=group.id, user_id=user_id))
            created.append(group)
        self.session.commit()
        for group in created:
            self.session.refresh(group)
        return created


class TaskRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, task_id: int) -> Optional[models.Task]:
        return self.session.get(models.Task, task_id)

    def list_for_user(self, user_id: int) -> List[models.Task]:
        """Tasks assigned to `user_id`, soonest due first (undated last)."""
        stmt = (
            select(models.Task)
            .where(models.Task.assigned_to == user_id)
            .order_by(models.Task.due_date.is_(None), models.Task.due_date, models.Task.id)
        )
        return self.session.exec(stmt).all()

    def save(self, task: models.Task) -> models.Task:
        self.session.add(task)
        self.session.commit()
        self.session.refresh(task)
        return task

    def delete(self, task: models.Task) -> None:
        self.session.delete(task)
        self.session.commit()


class ActivityRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(self, entry: models.ActivityLog) -> models.ActivityLog:
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        return entry

    def list_recent(self, project_id: int, group_id: Optional[int] = None, limit: int = 5) -> List[models.ActivityLog]:
        stmt = select(models.ActivityLog).where(models.ActivityLog.project_id == project_id)
        if group_id is not None:
            stmt = stmt.where(models.ActivityLog.group_id == group_id)
        stmt = stmt.order_by(models.ActivityLog.created_at.desc(), models.ActivityLog.id.desc()).limit(limit)
        return self.session.exec(stmt).all()
