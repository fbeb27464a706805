"""
Form storage used by the import pipeline.

``FormStore`` wraps a SQLAlchemy session. None of its methods commit: the
caller owns the transaction, so reading the schema, reading existing
identities, growing the schema and inserting members all land in one.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from member_import.db.models import ApplicationForm, Community, MemberApplication
from member_import.db.session import Base, get_engine
from member_import.domain.imports.exceptions import FormNotFoundError
from member_import.domain.imports.models import QuestionDefinition, QuestionType, Schema

logger = logging.getLogger(__name__)

DEFAULT_IDENTITY_QUESTION = QuestionDefinition(
    id="email",
    label="Email address",
    type=QuestionType.TEXT,
    required=True,
    placeholder="Enter your email",
)


def init_db(engine: Optional[Engine] = None) -> None:
    """Create the community, form and member tables if they don't exist."""
    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("communities, application_forms and member_applications tables ready")


def create_community_with_form(
    db: Session,
    name: str,
    questions: Optional[Schema] = None,
    title: str = "Application",
) -> Community:
    """Create a community and its application form; the identity question always comes first."""
    schema = list(questions or [])
    if not schema or not schema[0].required:
        schema.insert(0, DEFAULT_IDENTITY_QUESTION)

    community = Community(name=name)
    form = ApplicationForm(title=title, questions=[q.model_dump(mode="json") for q in schema])
    community.application_form = form
    db.add(community)
    db.commit()
    db.refresh(community)
    logger.info(f"Created community '{name}' ({community.id}) with {len(schema)} questions")
    return community


class SchemaIntegrityError(ValueError):
    """A schema write would break the append-only or identity-question rules."""


def check_schema_growth(current: Schema, proposed: Schema) -> None:
    """
    Refuse schema writes that do anything other than append.

    The identity question (element 0) must stay required and keep its id
    and type; every existing question must keep its position and id.
    """
    if len(proposed) < len(current):
        raise SchemaIntegrityError("Questions cannot be removed by an import")
    for old, new in zip(current, proposed):
        if old.id != new.id:
            raise SchemaIntegrityError(f"Question '{old.id}' cannot be replaced or reordered")
    if proposed:
        identity = proposed[0]
        if not identity.required:
            raise SchemaIntegrityError("The identity question must stay required")
        if current and identity.type != current[0].type:
            raise SchemaIntegrityError("The identity question cannot be retyped")


class FormStore:
    def __init__(self, db: Session):
        self.db = db

    def get_form(self, community_id: str, lock: bool = False) -> ApplicationForm:
        """
        Return the community's application form.

        With ``lock=True`` the row is read ``FOR UPDATE`` so concurrent
        imports into the same form serialize (where the database supports it).
        """
        stmt = select(ApplicationForm).where(ApplicationForm.community_id == community_id)
        if lock:
            stmt = stmt.with_for_update()
        form = self.db.execute(stmt).scalar_one_or_none()
        if form is None:
            raise FormNotFoundError(community_id)
        return form

    def lock_form(self, community_id: str) -> ApplicationForm:
        return self.get_form(community_id, lock=True)

    def read_schema(self, form: ApplicationForm) -> Schema:
        return [QuestionDefinition.model_validate(q) for q in (form.questions or [])]

    def write_schema(self, form: ApplicationForm, schema: Schema) -> None:
        check_schema_growth(self.read_schema(form), schema)
        # Assign a new list so the JSON column registers the change.
        form.questions = [q.model_dump(mode="json") for q in schema]
        self.db.flush()

    def existing_identities(self, community_id: str, candidates: Optional[Iterable[str]] = None) -> Set[str]:
        """
        Lowercased identities already stored for ``community_id``.

        When ``candidates`` is given only those identities are looked up.
        """
        stmt = select(func.lower(MemberApplication.email)).where(
            MemberApplication.community_id == community_id,
            MemberApplication.email.is_not(None),
        )
        if candidates is not None:
            wanted = sorted({c.strip().lower() for c in candidates if c})
            if not wanted:
                return set()
            stmt = stmt.where(func.lower(MemberApplication.email).in_(wanted))
        return {row for row in self.db.execute(stmt).scalars() if row}

    def insert_records(self, form: ApplicationForm, records: Iterable[Dict[str, Any]]) -> List[MemberApplication]:
        """Stage one MemberApplication per record and flush; commit is left to the caller."""
        created = [
            MemberApplication(
                form_id=form.id,
                community_id=form.community_id,
                email=record.get("email"),
                status=record["status"],
                responses=record["responses"],
            )
            for record in records
        ]
        self.db.add_all(created)
        self.db.flush()
        return created

    def list_applications(self, community_id: str) -> List[MemberApplication]:
        stmt = (
            select(MemberApplication)
            .where(MemberApplication.community_id == community_id)
            .order_by(MemberApplication.created_at)
        )
        return list(self.db.execute(stmt).scalars())
