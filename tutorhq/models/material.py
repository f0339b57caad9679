"""Material model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from tutorhq.core.clock import utcnow
from tutorhq.database import Base, new_id
from tutorhq.models.tutoring_class import TutoringClass


MATERIAL_TYPES = ('pdf', 'video', 'doc', 'link', 'image', 'audio', 'slides')


class Material(Base):
    """An uploaded or linked learning resource attached to a class."""
    __tablename__ = "materials"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String, nullable=False)
    description = Column(String)
    class_id = Column(String(36), ForeignKey("classes.id", ondelete="CASCADE"), index=True)
    tutor_id = Column(String(36), ForeignKey("tutors.id", ondelete="CASCADE"), index=True)
    type = Column(String, default='pdf')
    file_url = Column(String)
    file_name = Column(String)
    file_size = Column(Integer)
    duration = Column(Integer)
    external_url = Column(String)
    downloads = Column(Integer, default=0)
    status = Column(String, default='draft')
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    tutoring_class = relationship(TutoringClass, lazy="joined")
