"""Survey report aggregation.

Turns the flat answers/questions/responses join of one survey into per-question
summaries. Closed questions (single/multiple choice, rating) become a frequency
``Breakdown`` of option tokens; open questions (text, number, date) become a
``VerbatimList`` of raw answers, newest first.

The loader is the only place that touches storage: it takes the session
explicitly and issues exactly one row query per report.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Union

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from errors import SurveyNotFound
from models import Survey, Question, Response, Answer

logger = logging.getLogger(__name__)

CHOICE_TYPES = frozenset({"single_choice", "multiple_choice", "rating"})
MULTI_VALUE_SEPARATOR = ","


@dataclass(frozen=True)
class AnswerRow:
    question_id: int
    question_text: str
    question_type: str
    value: str
    channel: str
    submitted_at: datetime
    response_id: Optional[int] = None
    respondent_identifier: Optional[str] = None


@dataclass
class Breakdown:
    # option label -> occurrences; dicts keep first-seen insertion order
    counts: Dict[str, int] = field(default_factory=dict)

    def add(self, value: str) -> None:
        for token in value.split(MULTI_VALUE_SEPARATOR):
            token = token.strip()
            if token:
                self.counts[token] = self.counts.get(token, 0) + 1


@dataclass
class VerbatimEntry:
    value: str
    submitted_at: datetime
    channel: str


@dataclass
class VerbatimList:
    entries: List[VerbatimEntry] = field(default_factory=list)

    def add(self, row: AnswerRow) -> None:
        self.entries.append(VerbatimEntry(value=row.value, submitted_at=row.submitted_at, channel=row.channel))


Shape = Union[Breakdown, VerbatimList]


def shape_for(question_type: str) -> Shape:
    """Pick the summary shape for a question type."""
    return Breakdown() if question_type in CHOICE_TYPES else VerbatimList()


@dataclass
class QuestionSummary:
    question_id: int
    question_text: str
    question_type: str
    shape: Shape
    total_answers: int = 0


@dataclass
class SurveyInfo:
    id: int
    title: str
    description: Optional[str]
    total_unique_submission_timestamps: int = 0


@dataclass
class ReportResult:
    survey: SurveyInfo
    questions: List[QuestionSummary]


# ------------------------
# Loader (storage boundary)
# ------------------------
def load_survey(db: Session, survey_id: int, company_id: int) -> Survey:
    """Return the survey owned by ``company_id``.

    Raises:
        SurveyNotFound: absent, or owned by another company.
    """
    survey = db.execute(
        select(Survey).where(Survey.id == survey_id, Survey.company_id == company_id)
    ).scalar_one_or_none()
    if survey is None:
        raise SurveyNotFound(survey_id)
    return survey


def _answer_rows_query(survey_id: int):
    return (
        select(
            Question.id.label("question_id"),
            Question.text.label("question_text"),
            Question.type.label("question_type"),
            Answer.value.label("value"),
            Response.channel.label("channel"),
            Response.submitted_at.label("submitted_at"),
            Response.id.label("response_id"),
            Response.respondent_identifier.label("respondent_identifier"),
        )
        .select_from(Answer)
        .join(Question, Answer.question_id == Question.id)
        .join(Response, Answer.response_id == Response.id)
        .where(Response.survey_id == survey_id)
        .order_by(Question.order_index.asc(), Question.id.asc(),
                  Response.submitted_at.desc(), Response.id.desc())
    )


def _text(value) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    return str(value)


def _optional_text(value) -> Optional[str]:
    text = _text(value)
    return text or None


def load_answer_rows(db: Session, survey_id: int) -> List[AnswerRow]:
    """Load every answer of a survey, ordered by question display order, newest submission first."""
    df = pd.read_sql(_answer_rows_query(survey_id), db.connection())
    rows = []
    for rec in df.to_dict("records"):
        rows.append(AnswerRow(
            question_id=int(rec["question_id"]),
            question_text=_text(rec["question_text"]),
            question_type=_text(rec["question_type"]),
            value=_text(rec["value"]),
            channel=_text(rec["channel"]),
            submitted_at=pd.Timestamp(rec["submitted_at"]).to_pydatetime(),
            response_id=int(rec["response_id"]),
            respondent_identifier=_optional_text(rec["respondent_identifier"]),
        ))
    return rows


# ------------------------
# Aggregation
# ------------------------
def aggregate(survey: SurveyInfo, rows: List[AnswerRow]) -> ReportResult:
    """Group answer rows by question into breakdowns or verbatim lists.

    Questions appear in first-seen order, which is display order given the
    loader's ordering; questions without answers do not appear. The survey
    total counts distinct ``submitted_at`` values, which undercounts when two
    responses share a timestamp (see ``individual_responses`` for the exact
    figure).
    """
    summaries: Dict[int, QuestionSummary] = {}
    timestamps = set()

    for row in rows:
        summary = summaries.get(row.question_id)
        if summary is None:
            summary = QuestionSummary(
                question_id=row.question_id,
                question_text=row.question_text,
                question_type=row.question_type,
                shape=shape_for(row.question_type),
            )
            summaries[row.question_id] = summary
        elif (row.question_type in CHOICE_TYPES) != isinstance(summary.shape, Breakdown):
            # question type changed between rows; the later type wins
            logger.warning("question %s changed type to %s mid-report", row.question_id, row.question_type)
            summary.question_type = row.question_type
            summary.shape = shape_for(row.question_type)

        summary.total_answers += 1
        if isinstance(summary.shape, Breakdown):
            summary.shape.add(row.value)
        else:
            summary.shape.add(row)
        timestamps.add(row.submitted_at)

    info = SurveyInfo(
        id=survey.id,
        title=survey.title,
        description=survey.description,
        total_unique_submission_timestamps=len(timestamps),
    )
    return ReportResult(survey=info, questions=list(summaries.values()))


def build_report(db: Session, survey_id: int, company_id: int) -> ReportResult:
    survey = load_survey(db, survey_id, company_id)
    rows = load_answer_rows(db, survey.id)
    logger.info("aggregating survey %s: %d answer rows", survey.id, len(rows))
    info = SurveyInfo(id=survey.id, title=survey.title, description=survey.description)
    return aggregate(info, rows)


# ------------------------
# JSON shaping
# ------------------------
def _format_date(value: datetime) -> str:
    return value.isoformat()


def question_to_json(summary: QuestionSummary) -> dict:
    out = {
        "question_id": summary.question_id,
        "question": summary.question_text,
        "type": summary.question_type,
        "total_answers": summary.total_answers,
    }
    if isinstance(summary.shape, Breakdown):
        out["breakdown"] = [{"option": option, "count": count} for option, count in summary.shape.counts.items()]
    else:
        out["data"] = [
            {"value": e.value, "date": _format_date(e.submitted_at), "channel": e.channel}
            for e in summary.shape.entries
        ]
    return out


def report_to_json(result: ReportResult) -> dict:
    return {
        "survey": {
            "id": result.survey.id,
            "title": result.survey.title,
            "total_responses": result.survey.total_unique_submission_timestamps,
        },
        "results": [question_to_json(q) for q in result.questions],
    }


# ------------------------
# Individual responses
# ------------------------
def group_by_response(rows: List[AnswerRow]) -> List[dict]:
    """One record per submission, in loader order of first appearance."""
    responses: Dict[int, dict] = {}
    for row in rows:
        rec = responses.get(row.response_id)
        if rec is None:
            rec = {
                "response_id": row.response_id,
                "respondent_identifier": row.respondent_identifier,
                "submitted_at": row.submitted_at,
                "channel": row.channel,
                "answers": {},
            }
            responses[row.response_id] = rec
        rec["answers"][row.question_id] = row.value
    return sorted(responses.values(), key=lambda r: (r["submitted_at"], r["response_id"]), reverse=True)


def individual_responses(db: Session, survey_id: int, company_id: int) -> dict:
    """Per-submission view of a survey; the total is the exact number of responses."""
    survey = load_survey(db, survey_id, company_id)
    rows = load_answer_rows(db, survey.id)
    grouped = group_by_response(rows)
    questions = db.execute(
        select(Question).where(Question.survey_id == survey.id).order_by(Question.order_index, Question.id)
    ).scalars().all()
    return {
        "survey": {"id": survey.id, "title": survey.title, "total_responses": len(grouped)},
        "questions": [{"id": q.id, "text": q.text, "type": q.type, "order": q.order_index} for q in questions],
        "responses": [
            {**rec, "submitted_at": _format_date(rec["submitted_at"])} for rec in grouped
        ],
    }
