# schemas.py
from pydantic import BaseModel, Field
from typing import Any, List, Optional, Union

class RegisterCompany(BaseModel):
    company_name: Optional[str] = None
    nit: Optional[str] = None
    admin_name: Optional[str] = None
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None

class CompanyCreate(BaseModel):
    name: Optional[str] = None
    nit: Optional[str] = None

class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None

class UserCreate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    password: Optional[str] = None

class UserStatusUpdate(BaseModel):
    status: Optional[str] = None

class OptionIn(BaseModel):
    text: str
    value: Optional[str] = None

class QuestionCreate(BaseModel):
    text: Optional[str] = None
    type: Optional[str] = None
    options: Optional[List[Union[OptionIn, str]]] = None

class SurveyCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    questions: Optional[List[QuestionCreate]] = None

class SurveyUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None

class SurveyDuplicate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None

class AnswerIn(BaseModel):
    question_id: int
    value: Any = None   # str, number or list (multi-select)

class SubmitResponse(BaseModel):
    respondent_identifier: Optional[str] = None
    answers: Optional[List[AnswerIn]] = None

class WhatsappWebhook(BaseModel):
    from_: Optional[str] = Field(default=None, alias="from")
    survey_id: Optional[int] = None
    message: Optional[str] = None
    answers: Optional[List[AnswerIn]] = None
