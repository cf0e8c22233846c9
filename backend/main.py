import os, uuid, logging
from typing import Optional
from fastapi import FastAPI, Depends, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from db import Base, engine, get_db
from models import Company, User, Survey, Question, Option, Response as SurveyResponse, Answer, ROLES, USER_STATUSES, QUESTION_TYPES
from schemas import *
from errors import FeedflowError, InvalidRequest, NotFound, Forbidden, Conflict, Unauthorized
from security import (hash_password, verify_password, issue_token, get_current_user,
                      require_admin, require_editor, require_report_reader)
from reports import build_report, report_to_json, individual_responses
from xlsx_export import render_xlsx, XLSX_MEDIA_TYPE
from pdf_export import render_pdf, PDF_MEDIA_TYPE

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="FeedFlow API")

origins = os.getenv("ORIGINS", "http://localhost:5173").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Base.metadata.create_all(bind=engine)

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "https://feedflow.app").rstrip("/")

CHOICE_REQUIRING_OPTIONS = ("single_choice", "multiple_choice")
TYPE_ALIASES = {
    "seleccion": "single_choice",
    "texto": "text",
    "fecha": "date",
    "numero": "number",
    "calificacion": "rating",
    "multiple": "multiple_choice",
}

EXPORTERS = {
    "xlsx": (render_xlsx, XLSX_MEDIA_TYPE),
    "pdf": (render_pdf, PDF_MEDIA_TYPE),
}

# ------------------------
# Error handling
# ------------------------
@app.exception_handler(FeedflowError)
def handle_domain_error(request: Request, exc: FeedflowError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

@app.exception_handler(Exception)
def handle_unexpected_error(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})

# ------------------------
# Helpers
# ------------------------
def _required(value: Optional[str]) -> Optional[str]:
    """Return a stripped string, or None when missing/blank."""
    value = (value or "").strip()
    return value or None

def _ensure_unique_nit(db: Session, nit: Optional[str]) -> None:
    if nit and db.execute(select(Company).where(Company.nit == nit)).scalar_one_or_none():
        raise Conflict("A company with this NIT already exists")

def _ensure_unique_email(db: Session, email: str) -> None:
    if db.execute(select(User).where(User.email == email)).scalar_one_or_none():
        raise Conflict("A user with this email already exists")

def _commit_or_conflict(db: Session, message: str) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict(message)

def _user_out(u: User) -> dict:
    return {
        "id": u.id,
        "company_id": u.company_id,
        "name": u.name,
        "email": u.email,
        "role": u.role,
        "status": u.status,
        "created_at": u.created_at,
    }

def _new_slug(db: Session) -> str:
    """Return an 8-character link slug not used by any survey.

    Raises:
        FeedflowError: if no free slug is found after a few attempts.
    """
    for _ in range(5):
        slug = uuid.uuid4().hex[:8]
        if not db.execute(select(Survey.id).where(Survey.link_slug == slug)).first():
            return slug
    raise FeedflowError("Failed to generate a unique survey link")

def _links(slug: str) -> dict:
    short_link = f"{PUBLIC_BASE_URL}/s/{slug}"
    return {
        "short_link": short_link,
        "qr_code": f"https://api.qrserver.com/v1/create-qr-code/?size=150x150&data={short_link}",
    }

def _option_pair(opt) -> tuple[str, str]:
    if isinstance(opt, str):
        return opt, opt
    return opt.text, opt.value if opt.value is not None else opt.text

def _normalize_question(q: QuestionCreate, number: int) -> tuple[str, str, list[tuple[str, str]]]:
    """Validate one question payload and map Spanish type aliases.

    Args:
        q (QuestionCreate): {text, type, options?}.
        number (int): 1-based position, used in error messages.

    Returns:
        tuple: (text, canonical_type, [(option_text, option_value), ...])

    Raises:
        InvalidRequest: missing text/type, unknown type, or choice question without options.
    """
    text, qtype = _required(q.text), _required(q.type)
    if not text or not qtype:
        raise InvalidRequest(f"Question #{number} is incomplete: 'text' and 'type' are required")
    qtype = TYPE_ALIASES.get(qtype, qtype)
    if qtype not in QUESTION_TYPES:
        raise InvalidRequest(
            f"Invalid question type in question #{number}: '{qtype}'. Allowed: {', '.join(QUESTION_TYPES)}"
        )
    options = [_option_pair(o) for o in (q.options or [])]
    if qtype in CHOICE_REQUIRING_OPTIONS and not options:
        raise InvalidRequest(f"Question #{number} of type '{qtype}' requires a non-empty 'options' list")
    return text, qtype, options

def _add_question(db: Session, survey_id: int, order_index: int, text: str, qtype: str, options) -> Question:
    row = Question(survey_id=survey_id, text=text, type=qtype, order_index=order_index)
    db.add(row)
    db.flush()
    for opt_text, opt_value in options:
        db.add(Option(question_id=row.id, text=opt_text, value=opt_value))
    return row

def _question_out(q: Question) -> dict:
    return {
        "id": q.id,
        "text": q.text,
        "type": q.type,
        "order": q.order_index,
        "options": [{"id": o.id, "text": o.text, "value": o.value} for o in q.options],
    }

def _ordered_questions(db: Session, survey_id: int) -> list[Question]:
    return db.execute(
        select(Question).where(Question.survey_id == survey_id).order_by(Question.order_index, Question.id)
    ).scalars().all()

def _survey_out(s: Survey) -> dict:
    return {
        "id": s.id,
        "company_id": s.company_id,
        "created_by": s.created_by,
        "title": s.title,
        "description": s.description,
        "start_date": s.start_date,
        "end_date": s.end_date,
        "link_slug": s.link_slug,
        "created_at": s.created_at,
    }

def _owned_survey(db: Session, survey_id: int, user: User) -> Survey:
    s = db.execute(
        select(Survey).where(Survey.id == survey_id, Survey.company_id == user.company_id)
    ).scalar_one_or_none()
    if not s:
        raise NotFound("Survey not found")
    return s

def _stringify(value) -> str:
    """Answers are stored as text; multi-select lists are comma-joined, booleans lower-cased."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(_stringify(v) for v in value)
    return str(value)

def _store_response(db: Session, survey_id: int, channel: str, respondent: Optional[str], answers: list[AnswerIn]) -> SurveyResponse:
    """Persist a response header and its answers in one commit.

    Raises:
        InvalidRequest: if an answer targets a question outside the survey.
    """
    valid_ids = set(db.execute(select(Question.id).where(Question.survey_id == survey_id)).scalars().all())
    unknown = sorted({a.question_id for a in answers} - valid_ids)
    if unknown:
        raise InvalidRequest(f"Questions {unknown} do not belong to survey {survey_id}")

    resp = SurveyResponse(survey_id=survey_id, channel=channel, respondent_identifier=respondent)
    db.add(resp)
    db.flush()
    for a in answers:
        db.add(Answer(response_id=resp.id, question_id=a.question_id, value=_stringify(a.value)))
    db.commit()
    return resp

@app.get("/health")
def health():
    """Basic readiness probe.

    Returns:
        dict: {"ok": True}
    """
    return {"ok": True}

@app.get("/")
def welcome():
    return {"message": "FeedFlow API is running"}

# ------------------------
# Tenants: registration and companies
# ------------------------
@app.post("/register", status_code=201)
def register_company(payload: RegisterCompany, db: Session = Depends(get_db)):
    """Create a company together with its first admin user.

    Args:
        payload (RegisterCompany): company_name, nit?, admin_name, admin_email, admin_password.
        db (Session): DB session.

    Returns:
        dict: {"message", "data": {"company": {...}, "admin": {...}}}

    Raises:
        InvalidRequest: 400 if a required field is missing.
        Conflict: 409 on duplicate NIT or admin email.
    """
    company_name = _required(payload.company_name)
    admin_name = _required(payload.admin_name)
    admin_email = _required(payload.admin_email)
    nit = _required(payload.nit)
    missing = [name for name, value in (
        ("company_name", company_name), ("admin_name", admin_name),
        ("admin_email", admin_email), ("admin_password", payload.admin_password),
    ) if not value]
    if missing:
        raise InvalidRequest(f"Missing required fields: {', '.join(missing)}")

    _ensure_unique_nit(db, nit)
    _ensure_unique_email(db, admin_email)

    company = Company(name=company_name, nit=nit)
    db.add(company)
    db.flush()
    admin = User(company_id=company.id, name=admin_name, email=admin_email,
                 password=hash_password(payload.admin_password), role="admin", status="active")
    db.add(admin)
    _commit_or_conflict(db, "Company or admin already exists")
    logger.info("registered company %s with admin user %s", company.id, admin.id)

    return {
        "message": "Company registered",
        "data": {
            "company": {"id": company.id, "name": company.name, "nit": company.nit},
            "admin": _user_out(admin),
        },
    }

@app.post("/companies", status_code=201)
def create_company(payload: CompanyCreate, db: Session = Depends(get_db)):
    """Create a bare company record.

    Raises:
        InvalidRequest: 400 if name is missing.
        Conflict: 409 on duplicate NIT.
    """
    name = _required(payload.name)
    if not name:
        raise InvalidRequest("Company name is required")
    nit = _required(payload.nit)
    _ensure_unique_nit(db, nit)
    company = Company(name=name, nit=nit)
    db.add(company)
    _commit_or_conflict(db, "A company with this NIT already exists")
    return {"message": "Company created", "data": {"id": company.id, "name": company.name, "nit": company.nit}}

# ------------------------
# Auth
# ------------------------
@app.post("/auth/login")
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    """Authenticate by email/password and issue a bearer token.

    Returns:
        dict: {"token": str, "user": {id, name, role, company_id}}

    Raises:
        InvalidRequest: 400 if email or password missing.
        Unauthorized: 401 on unknown email or wrong password.
        Forbidden: 403 if the user is inactive.
    """
    email = _required(payload.email)
    if not email or not payload.password:
        raise InvalidRequest("Email and password are required")
    user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not user or not verify_password(payload.password, user.password):
        raise Unauthorized("Invalid credentials")
    if user.status != "active":
        raise Forbidden("Inactive user. Contact your administrator.")
    return {
        "message": "Login successful",
        "token": issue_token(user),
        "user": {"id": user.id, "name": user.name, "role": user.role, "company_id": user.company_id},
    }

# ------------------------
# Users (admin only)
# ------------------------
@app.post("/users", status_code=201)
def create_user(payload: UserCreate, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    """Create a user in the admin's company.

    Raises:
        InvalidRequest: 400 on missing fields or invalid role.
        Conflict: 409 on duplicate email.
    """
    name, email, role = _required(payload.name), _required(payload.email), _required(payload.role)
    if not name or not email or not role or not payload.password:
        raise InvalidRequest("Missing required fields (name, email, role, password)")
    if role not in ROLES:
        raise InvalidRequest(f"Role must be one of: {', '.join(ROLES)}")
    _ensure_unique_email(db, email)
    user = User(company_id=admin.company_id, name=name, email=email, role=role,
                password=hash_password(payload.password), status="active")
    db.add(user)
    _commit_or_conflict(db, "A user with this email already exists")
    return {"message": "User created", "data": _user_out(user)}

@app.get("/users")
def list_users(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    rows = db.execute(
        select(User).where(User.company_id == admin.company_id).order_by(User.id)
    ).scalars().all()
    return {"data": [_user_out(u) for u in rows]}

@app.patch("/users/{user_id}/status")
def update_user_status(user_id: int, payload: UserStatusUpdate, admin: User = Depends(require_admin),
                       db: Session = Depends(get_db)):
    """Activate or deactivate a user of the admin's company.

    Raises:
        InvalidRequest: 400 if status is not active/inactive.
        NotFound: 404 if user does not exist.
        Forbidden: 403 if the user belongs to another company.
    """
    if payload.status not in USER_STATUSES:
        raise InvalidRequest(f"Status must be one of: {', '.join(USER_STATUSES)}")
    user = db.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    if user.company_id != admin.company_id:
        raise Forbidden("You cannot modify users of another company")
    user.status = payload.status
    db.commit()
    return {"message": "User status updated", "data": _user_out(user)}

# ------------------------
# Surveys
# ------------------------
@app.post("/surveys", status_code=201)
def create_survey(payload: SurveyCreate, user: User = Depends(require_editor), db: Session = Depends(get_db)):
    """Create a survey with its questions and options atomically.

    Args:
        payload (SurveyCreate): title (required), description, start/end dates, questions[].
        user (User): authenticated admin or creator.
        db (Session): DB session.

    Returns:
        dict: {"message", "data": {survey fields, questions, links{short_link, qr_code}}}

    Raises:
        InvalidRequest: 400 on missing title or invalid question payloads.
    """
    title = _required(payload.title)
    if not title:
        raise InvalidRequest("Missing required field: title")
    questions = [_normalize_question(q, i) for i, q in enumerate(payload.questions or [], start=1)]

    survey = Survey(company_id=user.company_id, created_by=user.id, title=title,
                    description=payload.description, start_date=payload.start_date,
                    end_date=payload.end_date, link_slug=_new_slug(db))
    db.add(survey)
    db.flush()
    for order_index, (text, qtype, options) in enumerate(questions):
        _add_question(db, survey.id, order_index, text, qtype, options)
    db.commit()

    return {
        "message": "Survey created",
        "data": {
            **_survey_out(survey),
            "questions": [_question_out(q) for q in _ordered_questions(db, survey.id)],
            "links": _links(survey.link_slug),
        },
    }

@app.get("/surveys")
def list_surveys(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """List the company's surveys, newest first, with the creator's name."""
    rows = db.execute(
        select(Survey).where(Survey.company_id == user.company_id).order_by(Survey.created_at.desc(), Survey.id.desc())
    ).scalars().all()
    return {"data": [{**_survey_out(s), "creator_name": s.creator.name if s.creator else None} for s in rows]}

@app.get("/surveys/{survey_id}")
def get_survey(survey_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Get a company survey with ordered questions and nested options.

    Raises:
        NotFound: 404 if the survey is absent or belongs to another company.
    """
    s = _owned_survey(db, survey_id, user)
    return {"data": {**_survey_out(s), "questions": [_question_out(q) for q in _ordered_questions(db, s.id)]}}

@app.put("/surveys/{survey_id}")
def update_survey(survey_id: int, payload: SurveyUpdate, user: User = Depends(require_editor),
                  db: Session = Depends(get_db)):
    """Update survey metadata (title, description, dates); questions are untouched.

    Raises:
        NotFound: 404 if survey not found.
        InvalidRequest: 400 if no updatable field is provided or title is blanked.
    """
    s = _owned_survey(db, survey_id, user)
    updates = payload.model_dump(exclude_unset=True)
    if not updates:
        raise InvalidRequest("No fields provided to update")
    if "title" in updates and not _required(updates["title"]):
        raise InvalidRequest("Title cannot be empty")
    for key, value in updates.items():
        setattr(s, key, value)
    db.commit()
    return {"message": "Survey updated", "data": _survey_out(s)}

@app.delete("/surveys/{survey_id}")
def delete_survey(survey_id: int, user: User = Depends(require_editor), db: Session = Depends(get_db)):
    """Hard-delete a survey and its questions, options, responses and answers (via FKs)."""
    s = _owned_survey(db, survey_id, user)
    db.delete(s)
    db.commit()
    return {"message": "Survey deleted"}

@app.post("/surveys/{survey_id}/duplicate", status_code=201)
def duplicate_survey(survey_id: int, payload: Optional[SurveyDuplicate] = None,
                     user: User = Depends(require_editor), db: Session = Depends(get_db)):
    """Copy a survey with its questions and options under a new link slug.

    Args:
        survey_id (int): Survey to copy.
        payload (SurveyDuplicate|None): Optional overrides; title defaults to "<title> (Copia)".

    Returns:
        dict: {"message", "data": {"id", "title"}}
    """
    original = _owned_survey(db, survey_id, user)
    overrides = payload.model_dump(exclude_unset=True) if payload else {}

    copy = Survey(
        company_id=original.company_id,
        created_by=user.id,
        title=_required(overrides.get("title")) or f"{original.title} (Copia)",
        description=overrides.get("description", original.description),
        start_date=overrides.get("start_date") or original.start_date,
        end_date=overrides.get("end_date") or original.end_date,
        link_slug=_new_slug(db),
    )
    db.add(copy)
    db.flush()
    for q in _ordered_questions(db, original.id):
        _add_question(db, copy.id, q.order_index, q.text, q.type, [(o.text, o.value) for o in q.options])
    db.commit()
    return {"message": "Survey duplicated", "data": {"id": copy.id, "title": copy.title}}

# ------------------------
# Questions
# ------------------------
@app.post("/surveys/{survey_id}/questions", status_code=201)
def add_question(survey_id: int, q: QuestionCreate, user: User = Depends(require_editor),
                 db: Session = Depends(get_db)):
    """Append a question (and its options) to the end of a survey.

    Raises:
        NotFound: 404 if survey not found.
        InvalidRequest: 400 on invalid question payload.
    """
    s = _owned_survey(db, survey_id, user)
    text, qtype, options = _normalize_question(q, 1)
    count = db.execute(select(func.count()).select_from(Question).where(Question.survey_id == s.id)).scalar_one()
    row = _add_question(db, s.id, count, text, qtype, options)
    db.commit()
    return {"message": "Question added", "data": {**_question_out(row), "survey_id": s.id}}

@app.delete("/surveys/{survey_id}/questions/{question_id}")
def delete_question(survey_id: int, question_id: int, user: User = Depends(require_editor),
                    db: Session = Depends(get_db)):
    """Delete a question and its options/answers (via FKs).

    Raises:
        NotFound: 404 if the survey or the question within it is not found.
    """
    s = _owned_survey(db, survey_id, user)
    q = db.get(Question, question_id)
    if not q or q.survey_id != s.id:
        raise NotFound("Question not found")
    db.delete(q)
    db.commit()
    return {"message": "Question deleted"}

# ------------------------
# Public: survey by short link, submissions
# ------------------------
@app.get("/s/{slug}")
def survey_by_slug(slug: str, db: Session = Depends(get_db)):
    """Resolve a short link to the survey content needed to render the form.

    Raises:
        NotFound: 404 if no survey uses the slug.
    """
    s = db.execute(select(Survey).where(Survey.link_slug == slug)).scalar_one_or_none()
    if not s:
        raise NotFound("Survey not found")
    return {
        "data": {
            "id": s.id,
            "title": s.title,
            "description": s.description,
            "start_date": s.start_date,
            "end_date": s.end_date,
            "questions": [_question_out(q) for q in _ordered_questions(db, s.id)],
        }
    }

@app.post("/submit/{survey_id}", status_code=201)
def submit_response(survey_id: int, payload: SubmitResponse, db: Session = Depends(get_db)):
    """Store a web-channel response and its answers atomically.

    Args:
        survey_id (int): Survey being answered.
        payload (SubmitResponse): {respondent_identifier?, answers: [{question_id, value}]}.

    Returns:
        dict: {"message", "data": {"response_id": int}}

    Raises:
        InvalidRequest: 400 if answers are missing or target foreign questions.
        NotFound: 404 if the survey does not exist.
    """
    if not payload.answers:
        raise InvalidRequest("Answers are required to submit the survey")
    if not db.get(Survey, survey_id):
        raise NotFound("Survey not found")
    resp = _store_response(db, survey_id, "web", _required(payload.respondent_identifier), payload.answers)
    return {"message": "Response saved", "data": {"response_id": resp.id}}

@app.post("/webhook/whatsapp")
def whatsapp_webhook(payload: WhatsappWebhook, db: Session = Depends(get_db)):
    """Simulated messaging webhook: receives answers already parsed by a bot.

    Returns:
        dict: {"status": "success", "response_id": int}

    Raises:
        InvalidRequest: 400 if survey_id or answers are missing.
        NotFound: 404 if the survey does not exist.
    """
    if not payload.survey_id or not payload.answers:
        raise InvalidRequest("Invalid payload for WhatsApp simulation")
    if not db.get(Survey, payload.survey_id):
        raise NotFound("Survey not found")
    resp = _store_response(db, payload.survey_id, "whatsapp", _required(payload.from_), payload.answers)
    return {"status": "success", "response_id": resp.id}

# ------------------------
# Reports (admin and analyst only)
# ------------------------
@app.get("/reports/{survey_id}")
def survey_report(survey_id: int, user: User = Depends(require_report_reader), db: Session = Depends(get_db)):
    """Aggregated report: option breakdowns for closed questions, answer lists for open ones.

    Raises:
        NotFound: 404 if the survey is absent or owned by another company.
    """
    result = build_report(db, survey_id, user.company_id)
    return {"company": user.company_id, **report_to_json(result)}

@app.get("/reports/{survey_id}/responses")
def survey_individual_responses(survey_id: int, user: User = Depends(require_report_reader),
                                db: Session = Depends(get_db)):
    """One record per submission with its answers keyed by question id."""
    return individual_responses(db, survey_id, user.company_id)

@app.get("/reports/{survey_id}/export")
def export_report(survey_id: int, fmt: Optional[str] = Query(default=None, alias="format"),
                  user: User = Depends(require_report_reader), db: Session = Depends(get_db)):
    """Export the aggregated report as a spreadsheet or a PDF.

    Args:
        survey_id (int): Survey PK.
        fmt (str): 'xlsx' or 'pdf' (query param ``format``).

    Returns:
        Response: attachment `reporte_encuesta_<id>.<format>`.

    Raises:
        InvalidRequest: 400 if format is missing or unsupported (checked before any loading).
        NotFound: 404 if the survey is absent or owned by another company.
    """
    if not fmt:
        raise InvalidRequest("The 'format' query parameter is required (xlsx or pdf)")
    if fmt not in EXPORTERS:
        raise InvalidRequest(f"Unsupported format '{fmt}'. Use 'xlsx' or 'pdf'")
    render, media_type = EXPORTERS[fmt]

    result = build_report(db, survey_id, user.company_id)
    content = render(result)
    logger.info("exported survey %s as %s (%d bytes)", survey_id, fmt, len(content))
    return Response(content=content, media_type=media_type,
                    headers={"Content-Disposition": f"attachment; filename=reporte_encuesta_{survey_id}.{fmt}"})
