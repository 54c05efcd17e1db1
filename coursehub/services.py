"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories and
domain helpers. Services are intentionally thin: they perform validation
and permission checks, execute domain logic and persist aggregates via
repositories. Failures are raised as `ValueError` (bad input), `NotFound`
and `Forbidden`; controllers translate them to HTTP responses.
"""

from datetime import datetime, timedelta, timezone
from passlib.context import CryptContext
import json
import jwt
import logging
import secrets
from typing import List, Optional
from . import models, repositories
from sqlmodel import Session
from .config import settings
from .utils.grouping import Group, ManualGroup, RosterMember, SkillProfile, form_groups, shape_groups

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
JOIN_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
JOIN_CODE_LENGTH = 6
ROLES = ("professor", "student")
TASK_STATUSES = ("todo", "in_progress", "done")

# survey question label -> StudentStrength column
SURVEY_SKILLS = {
    "Research": "research_rating",
    "Writing & Editing": "writing_rating",
    "Visual Design": "design_rating",
    "Technical / Implementation": "technical_rating",
}

logger = logging.getLogger("coursehub.services")


class NotFound(LookupError):
    pass


class Forbidden(PermissionError):
    pass


def normalize_role(role: str) -> str:
    """Map client role names onto the stored ones (``teacher`` means professor)."""
    value = (role or "").strip().lower()
    if value == "teacher":
        value = "professor"
    if value not in ROLES:
        raise ValueError(f"role must be one of {', '.join(ROLES)}")
    return value


def generate_join_code(length: int = JOIN_CODE_LENGTH) -> str:
    return "".join(secrets.choice(JOIN_CODE_ALPHABET) for _ in range(length))


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands datetimes back without tzinfo
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _aware(value).isoformat()
    return value.isoformat()


class AuthService:
    """Authentication related operations (register, authenticate, role change)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, email: str, password: str, name: str = "", role: str = "student") -> models.User:
        """Create a new user with a hashed password.

        Returns the persisted `User` instance.
        """
        email = email.strip().lower()
        if not email or not password:
            raise ValueError("email and password are required")
        hashed = PWD_CTX.hash(password)
        u = models.User(email=email, name=name.strip(), role=normalize_role(role), password_hash=hashed)
        return self.user_repo.create(u)

    def authenticate(self, email: str, password: str):
        """Verify credentials and return a signed JWT token on success.

        Returns `None` if authentication fails.
        """
        user = self.user_repo.get_by_email(email.strip().lower())
        if not user:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {"user_id": user.id, "email": user.email, "role": user.role, "exp": int(expire.timestamp())}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    def set_role(self, user: models.User, role: str) -> models.User:
        user.role = normalize_role(role)
        return self.user_repo.save(user)


class ClassService:
    """Classes, join codes and projects."""
    def __init__(self, session: Session):
        self.session = session
        self.class_repo = repositories.ClassRepository(session)
        self.project_repo = repositories.ProjectRepository(session)
        self.user_repo = repositories.UserRepository(session)

    def create_class(self, professor: models.User, name: str) -> models.ClassRoom:
        """Create a class with a fresh join code and enrol its professor."""
        if professor.role != "professor":
            raise Forbidden("only professors can create classes")
        name = name.strip()
        if not name:
            raise ValueError("name is required")
        code = generate_join_code()
        while self.class_repo.code_exists(code):
            code = generate_join_code()
        cls = models.ClassRoom(
            name=name,
            code=code,
            join_code_expires_at=datetime.now(timezone.utc) + timedelta(days=settings.JOIN_CODE_TTL_DAYS),
            professor_id=professor.id,
        )
        cls = self.class_repo.create(cls)
        self.class_repo.add_member(cls.id, professor.id, "professor")
        logger.info("class_created %s", json.dumps({"class_id": cls.id, "professor_id": professor.id}))
        return cls

    def list_classes(self, user: models.User) -> List[models.ClassRoom]:
        if user.role == "professor":
            return self.class_repo.list_for_professor(user.id)
        return self.class_repo.list_for_member(user.id)

    def preview_code(self, user: models.User, raw_code: str) -> dict:
        """Look up a class by join code and describe it for a student.

        Raises `NotFound` for unknown codes and `ValueError` for expired ones.
        """
        if user.role != "student":
            raise Forbidden("only students can preview codes")
        code = (raw_code or "").strip().upper()
        if not code:
            raise ValueError("code is required")
        cls = self.class_repo.get_by_code(code)
        if not cls:
            raise NotFound("invalid code")
        expires = _aware(cls.join_code_expires_at)
        if expires is not None and expires < datetime.now(timezone.utc):
            raise ValueError("code expired")
        professor = self.user_repo.get(cls.professor_id)
        out = self.class_out(cls)
        out.update({
            "professor_name": (professor.name if professor and professor.name else "Professor"),
            "member_count": self.class_repo.count_members(cls.id),
            "already_member": self.class_repo.get_membership(cls.id, user.id) is not None,
        })
        return out

    def join(self, user: models.User, raw_code: str) -> dict:
        preview = self.preview_code(user, raw_code)
        if preview["already_member"]:
            raise ValueError("already a member of this class")
        self.class_repo.add_member(preview["id"], user.id, "student")
        preview["member_count"] += 1
        preview["already_member"] = True
        logger.info("class_joined %s", json.dumps({"class_id": preview["id"], "user_id": user.id}))
        return preview

    def require_owner(self, user: models.User, class_id: int) -> models.ClassRoom:
        cls = self.class_repo.get(class_id)
        if not cls:
            raise NotFound("class not found")
        if cls.professor_id != user.id:
            raise Forbidden("not the owner of this class")
        return cls

    def require_access(self, user: models.User, class_id: int) -> models.ClassRoom:
        """Allow the owning professor or any class member."""
        cls = self.class_repo.get(class_id)
        if not cls:
            raise NotFound("class not found")
        if cls.professor_id != user.id and not self.class_repo.get_membership(class_id, user.id):
            raise Forbidden("not a member of this class")
        return cls

    def require_project(self, class_id: int, project_id: int) -> models.Project:
        project = self.project_repo.get(project_id)
        if not project or project.class_id != class_id:
            raise NotFound("project not found for class")
        return project

    def create_project(self, user: models.User, class_id: int, name: str, **fields) -> models.Project:
        self.require_owner(user, class_id)
        name = name.strip()
        if not name:
            raise ValueError("name is required")
        project = models.Project(class_id=class_id, name=name, **fields)
        return self.project_repo.create(project)

    def list_projects(self, user: models.User, class_id: int) -> List[models.Project]:
        self.require_access(user, class_id)
        return self.project_repo.list_for_class(class_id)

    @staticmethod
    def class_out(cls: models.ClassRoom) -> dict:
        return {
            "id": cls.id,
            "name": cls.name,
            "code": cls.code,
            "join_code_expires_at": _iso(cls.join_code_expires_at),
            "created_at": _iso(cls.created_at),
        }

    @staticmethod
    def project_out(project: models.Project) -> dict:
        return {
            "id": project.id,
            "class_id": project.class_id,
            "name": project.name,
            "description": project.description,
            "due_date": _iso(project.due_date),
            "assignment_mode": project.assignment_mode,
            "grouping_strategy": project.grouping_strategy,
        }


class SurveyService:
    """Store and read back a student's skill survey."""
    def __init__(self, session: Session):
        self.session = session
        self.strength_repo = repositories.StrengthRepository(session)

    def save(self, user: models.User, skills: List[dict]) -> models.StudentStrength:
        """Upsert ratings from `[{name, rating}]`; unanswered skills count as 0."""
        ratings = {column: 0 for column in SURVEY_SKILLS.values()}
        for item in skills:
            column = SURVEY_SKILLS.get(item.get("name"))
            if column is None:
                continue
            rating = int(item.get("rating") or 0)
            if not 0 <= rating <= 5:
                raise ValueError("ratings must be between 0 and 5")
            ratings[column] = rating
        strength = models.StudentStrength(user_id=user.id, updated_at=datetime.now(timezone.utc), **ratings)
        return self.strength_repo.upsert(strength)

    def get(self, user: models.User) -> dict:
        strength = self.strength_repo.get_for_user(user.id)
        if not strength:
            raise NotFound("no survey found")
        return {
            "research_rating": strength.research_rating,
            "writing_rating": strength.writing_rating,
            "design_rating": strength.design_rating,
            "technical_rating": strength.technical_rating,
            "updated_at": _iso(strength.updated_at),
        }


class GroupingService:
    """Form and persist project groups for a class roster."""
    def __init__(self, session: Session):
        self.session = session
        self.classes = ClassService(session)
        self.class_repo = repositories.ClassRepository(session)
        self.strength_repo = repositories.StrengthRepository(session)
        self.group_repo = repositories.GroupRepository(session)
        self.activity = ActivityService(session)

    def roster(self, class_id: int) -> List[RosterMember]:
        """Students of the class with their survey ratings (all zero when missing)."""
        students = self.class_repo.list_students(class_id)
        strengths = self.strength_repo.list_for_users(s.id for s in students)
        out = []
        for s in students:
            row = strengths.get(s.id)
            skills = SkillProfile()
            if row:
                skills = SkillProfile.from_ratings(
                    research=row.research_rating,
                    writing=row.writing_rating,
                    design=row.design_rating,
                    technical=row.technical_rating,
                )
            out.append(RosterMember(id=s.id, display_name=s.name or "Student", email=s.email, skills=skills))
        return out

    def form(self, user: models.User, class_id: int, project_id: int, mode: str,
             groups: Optional[List[dict]] = None, group_size: Optional[int] = None) -> List[dict]:
        """Replace the project's groups with a new partition of the class.

        `mode` is ``manual`` or ``automatic`` (``auto`` is accepted as an
        alias). Existing groups are only removed once the new partition has
        been computed, so a rejected request leaves them in place.
        """
        self.classes.require_owner(user, class_id)
        project = self.classes.require_project(class_id, project_id)
        if mode == "auto":
            mode = "automatic"
        manual = [ManualGroup(name=g["name"], member_ids=list(g.get("member_ids") or [])) for g in (groups or [])]
        formed = form_groups(self.roster(class_id), mode, groups=manual, group_size=group_size,
                             default_size=settings.DEFAULT_GROUP_SIZE)
        self.group_repo.replace_for_project(project.id, [(g.name, g.member_ids) for g in formed])
        self.activity.record(
            user, project.id, "groups_formed",
            entity_id=str(project.id), entity_title=f"{len(formed)} groups ({mode})",
        )
        logger.info(
            "groups_formed %s",
            json.dumps({"project_id": project.id, "mode": mode, "groups": len(formed),
                        "members": sum(len(g.members) for g in formed)}),
        )
        return self.list_groups(user, class_id, project_id)

    def list_groups(self, user: models.User, class_id: int, project_id: int) -> List[dict]:
        self.classes.require_access(user, class_id)
        project = self.classes.require_project(class_id, project_id)
        stored = self.group_repo.list_for_project(project.id)
        members_by_group = {g.id: [] for g in stored}
        for member, member_user in self.group_repo.list_members(members_by_group):
            members_by_group[member.group_id].append(
                RosterMember(id=member_user.id, display_name=member_user.name or "Student", email=member_user.email)
            )
        shaped = shape_groups(Group(name=g.name, members=tuple(members_by_group[g.id])) for g in stored)
        return [{"id": g.id, **out} for g, out in zip(stored, shaped)]


class TaskService:
    """Personal task list of a user."""
    def __init__(self, session: Session):
        self.session = session
        self.task_repo = repositories.TaskRepository(session)
        self.project_repo = repositories.ProjectRepository(session)

    def list_tasks(self, user: models.User) -> List[dict]:
        tasks = self.task_repo.list_for_user(user.id)
        names = self.project_repo.names_by_id(t.project_id for t in tasks if t.project_id)
        return [self._out(t, names.get(t.project_id)) for t in tasks]

    def create(self, user: models.User, title: str, status: str = "todo",
               due_date: Optional[datetime] = None, project_id: Optional[int] = None) -> dict:
        title = title.strip()
        if not title:
            raise ValueError("title is required")
        self._check_status(status)
        project_name = None
        if project_id is not None:
            project = self.project_repo.get(project_id)
            if not project:
                raise NotFound("project not found")
            project_name = project.name
        task = models.Task(title=title, status=status, due_date=due_date,
                           project_id=project_id, assigned_to=user.id)
        return self._out(self.task_repo.save(task), project_name)

    def update(self, user: models.User, task_id: int, changes: dict) -> dict:
        """Apply the provided fields to a task the user owns."""
        task = self._owned(user, task_id)
        if changes.get("status") is not None:
            self._check_status(changes["status"])
            task.status = changes["status"]
        if changes.get("title") is not None:
            if not changes["title"].strip():
                raise ValueError("title is required")
            task.title = changes["title"].strip()
        if "due_date" in changes:
            task.due_date = changes["due_date"]
        task = self.task_repo.save(task)
        names = self.project_repo.names_by_id([task.project_id] if task.project_id else [])
        return self._out(task, names.get(task.project_id))

    def delete(self, user: models.User, task_id: int) -> None:
        self.task_repo.delete(self._owned(user, task_id))

    def _owned(self, user: models.User, task_id: int) -> models.Task:
        task = self.task_repo.get(task_id)
        if not task or task.assigned_to != user.id:
            raise NotFound("task not found")
        return task

    @staticmethod
    def _check_status(status: str) -> None:
        if status not in TASK_STATUSES:
            raise ValueError(f"status must be one of {', '.join(TASK_STATUSES)}")

    @staticmethod
    def _out(task: models.Task, project_name: Optional[str]) -> dict:
        return {
            "id": task.id,
            "title": task.title,
            "status": task.status or "todo",
            "due_date": _iso(task.due_date),
            "project_id": task.project_id,
            "project_name": project_name,
        }


class ActivityService:
    """Project activity feed."""
    def __init__(self, session: Session):
        self.session = session
        self.activity_repo = repositories.ActivityRepository(session)
        self.user_repo = repositories.UserRepository(session)
        self.group_repo = repositories.GroupRepository(session)

    def record(self, user: models.User, project_id: int, action_type: str, group_id: Optional[int] = None,
               entity_id: Optional[str] = None, entity_title: Optional[str] = None) -> models.ActivityLog:
        entry = models.ActivityLog(
            user_id=user.id, project_id=project_id, group_id=group_id,
            action_type=action_type, entity_id=entity_id, entity_title=entity_title,
        )
        return self.activity_repo.create(entry)

    def log(self, user: models.User, project_id: int, group_id: int, action_type: str,
            entity_id: Optional[str] = None, entity_title: Optional[str] = None) -> dict:
        """Record an entry for a group of a project the user can see."""
        self.require_project_access(user, project_id)
        group = self.group_repo.get(group_id)
        if not group or group.project_id != project_id:
            raise NotFound("group not found for project")
        action_type = action_type.strip()
        if not action_type:
            raise ValueError("action_type is required")
        entry = self.record(user, project_id, action_type, group_id=group_id,
                            entity_id=entity_id, entity_title=entity_title)
        logger.info(
            "activity_logged %s",
            json.dumps({"project_id": project_id, "group_id": group_id, "action_type": action_type}),
        )
        return self._out(entry, user)

    def require_project_access(self, user: models.User, project_id: int) -> models.Project:
        classes = ClassService(self.session)
        project = classes.project_repo.get(project_id)
        if not project:
            raise NotFound("project not found")
        classes.require_access(user, project.class_id)
        return project

    def recent(self, project_id: int, group_id: Optional[int] = None, limit: int = 5) -> List[dict]:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        entries = self.activity_repo.list_recent(project_id, group_id=group_id, limit=limit)
        users = {}
        for e in entries:
            if e.user_id not in users:
                users[e.user_id] = self.user_repo.get(e.user_id)
        return [self._out(e, users[e.user_id]) for e in entries]

    @staticmethod
    def _out(entry: models.ActivityLog, author: Optional[models.User]) -> dict:
        return {
            "id": entry.id,
            "group_id": entry.group_id,
            "action_type": entry.action_type,
            "entity_id": entry.entity_id,
            "entity_title": entry.entity_title,
            "created_at": _iso(entry.created_at),
            "user_id": entry.user_id,
            "user_name": (author.name if author and author.name else "Unknown"),
            "user_email": author.email if author else "",
        }
