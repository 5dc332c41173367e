from pydantic import BaseModel, model_validator
from typing import Optional

from portal.schemas.normalize import normalize_student_fields
from portal.schemas.refs import StudentRef, StudentById, StudentByEmail


class EnrollmentCreate(BaseModel):
    student_id: Optional[int] = None
    student_email: Optional[str] = None
    course_id: Optional[int] = None
    course_code: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _fold_student_aliases(cls, data):
        if isinstance(data, dict):
            return normalize_student_fields(data)
        return data

    def student_ref(self) -> Optional[StudentRef]:
        if self.student_id is not None:
            return StudentById(self.student_id)
        if self.student_email:
            return StudentByEmail(self.student_email)
        return None


class EnrollmentCreated(BaseModel):
    id: int
    message: str = "Enrollment created successfully"
