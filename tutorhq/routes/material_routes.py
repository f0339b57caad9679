import logging
from datetime import datetime

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from pydantic import Field, field_validator, model_validator
from sqlalchemy.orm import Session

from tutorhq.auth.dependencies import CurrentUser, get_current_user, require_role
from tutorhq.core import config
from tutorhq.core.schemas import CamelModel, OrmModel
from tutorhq.database import get_db
from tutorhq.models.assignment import PUBLICATION_STATUSES
from tutorhq.models.material import MATERIAL_TYPES, Material
from tutorhq.models.tutoring_class import ClassEnrollment, TutoringClass
from tutorhq.services.access import enrolled_class_ids, ensure_can_view_student, is_enrolled
from tutorhq.services.notifications import notify_many
from tutorhq.services.storage import read_upload, storage_path, upload_to_bucket

router = APIRouter(tags=['materials'])
logger = logging.getLogger(__name__)


class MaterialResponse(OrmModel):
    id: str
    title: str
    description: str | None = None
    class_id: str | None = None
    tutor_id: str | None = None
    type: str
    file_url: str | None = None
    file_name: str | None = None
    file_size: int | None = None
    duration: int | None = None
    external_url: str | None = None
    downloads: int = 0
    status: str
    created_at: datetime | None = None


def _check_type(value: str | None) -> str | None:
    if value is not None and value not in MATERIAL_TYPES:
        raise ValueError(f"type must be one of: {', '.join(MATERIAL_TYPES)}")
    return value


def _check_status(value: str | None) -> str | None:
    if value is not None and value not in PUBLICATION_STATUSES:
        raise ValueError(f"status must be one of: {', '.join(PUBLICATION_STATUSES)}")
    return value


class CreateMaterialRequest(CamelModel):
    title: str = Field(min_length=1)
    class_id: str = Field(min_length=1)
    type: str = 'pdf'
    description: str | None = None
    file_url: str | None = None
    file_name: str | None = None
    file_size: int | None = Field(default=None, ge=0)
    duration: int | None = Field(default=None, ge=0)
    external_url: str | None = None
    status: str = 'draft'

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str) -> str:
        return _check_type(value)

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        return _check_status(value)

    @model_validator(mode='after')
    def validate_location(self):
        if self.type == 'link':
            if not self.external_url:
                raise ValueError('externalUrl is required for link materials')
        elif not self.file_url:
            raise ValueError('fileUrl is required for uploaded materials')
        return self


class UpdateMaterialRequest(CamelModel):
    non_nullable = ('title', 'type', 'status')

    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    type: str | None = None
    file_url: str | None = None
    file_name: str | None = None
    file_size: int | None = Field(default=None, ge=0)
    duration: int | None = Field(default=None, ge=0)
    external_url: str | None = None
    status: str | None = None

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str | None) -> str | None:
        return _check_type(value)

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        return _check_status(value)


def get_material_or_404(db: Session, material_id: str) -> Material:
    material = db.get(Material, material_id)
    if material is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Material not found')
    return material


def get_owned_material(db: Session, material_id: str, current_user: CurrentUser, action: str) -> Material:
    material = get_material_or_404(db, material_id)
    if material.tutor_id != current_user.id and not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f'You can only {action} your own materials',
        )
    return material


def ensure_can_view_material(db: Session, material: Material, current_user: CurrentUser) -> None:
    if material.tutor_id == current_user.id or current_user.is_admin:
        return
    if material.status == 'published' and is_enrolled(db, current_user.id, material.class_id):
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You do not have access to this material')


def announce_material(db: Session, material: Material) -> None:
    rows = db.query(ClassEnrollment.student_id).filter(ClassEnrollment.class_id == material.class_id).all()
    notify_many(
        db,
        [student_id for (student_id,) in rows],
        'material_uploaded',
        'New material',
        f'"{material.title}" was shared in your class',
        entity_type='material',
        entity_id=material.id,
    )


@router.post('/upload', status_code=status.HTTP_201_CREATED)
def upload_material_file(
    file: UploadFile = File(...),
    current_user: CurrentUser = Depends(require_role('tutor')),
):
    contents = read_upload(file)
    path = storage_path(current_user.id, file.filename)
    public_url = upload_to_bucket(config.MATERIALS_BUCKET, path, contents, file.content_type)

    logger.info('Tutor %s uploaded %s (%d bytes)', current_user.id, path, len(contents))
    return {
        'message': 'File uploaded successfully',
        'fileUrl': public_url,
        'fileName': file.filename,
        'fileSize': len(contents),
        'path': path,
    }


@router.post('', status_code=status.HTTP_201_CREATED)
def create_material(
    data: CreateMaterialRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role('tutor')),
):
    tutoring_class = db.get(TutoringClass, data.class_id)
    if tutoring_class is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Class not found')
    if tutoring_class.tutor_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='You can only add materials to your own classes',
        )

    material = Material(tutor_id=current_user.id, downloads=0, **data.model_dump())
    db.add(material)
    db.flush()
    if material.status == 'published':
        announce_material(db, material)
    db.commit()
    db.refresh(material)
    return {'message': 'Material created successfully', 'material': MaterialResponse.model_validate(material)}


@router.get('/tutor/all')
def list_tutor_materials(db: Session = Depends(get_db), current_user: CurrentUser = Depends(require_role('tutor'))):
    materials = db.query(Material).filter(Material.tutor_id == current_user.id).order_by(Material.created_at.desc()).all()
    return {'materials': [MaterialResponse.model_validate(item) for item in materials]}


@router.get('/class/{class_id}')
def list_class_materials(
    class_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    tutoring_class = db.get(TutoringClass, class_id)
    if tutoring_class is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Class not found')

    query = db.query(Material).filter(Material.class_id == class_id)
    if tutoring_class.tutor_id != current_user.id and not current_user.is_admin:
        if not is_enrolled(db, current_user.id, class_id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You are not enrolled in this class')
        query = query.filter(Material.status == 'published')

    materials = query.order_by(Material.created_at.desc()).all()
    return {'materials': [MaterialResponse.model_validate(item) for item in materials]}


@router.get('/student/{student_id}')
def list_student_materials(
    student_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    ensure_can_view_student(db, current_user, student_id)
    materials = db.query(Material).filter(
        Material.class_id.in_(enrolled_class_ids(db, student_id)),
        Material.status == 'published',
    ).order_by(Material.created_at.desc()).all()
    return {'materials': [MaterialResponse.model_validate(item) for item in materials]}


@router.get('/{material_id}')
def get_material(material_id: str, db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    material = get_material_or_404(db, material_id)
    ensure_can_view_material(db, material, current_user)
    return {'material': MaterialResponse.model_validate(material)}


@router.patch('/{material_id}')
def update_material(
    material_id: str,
    data: UpdateMaterialRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    material = get_owned_material(db, material_id, current_user, 'update')

    was_published = material.status == 'published'
    for column, value in data.updates().items():
        setattr(material, column, value)
    if material.type == 'link' and not material.external_url:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='externalUrl is required for link materials')
    if material.status == 'published' and not was_published:
        announce_material(db, material)

    db.commit()
    db.refresh(material)
    return {'message': 'Material updated successfully', 'material': MaterialResponse.model_validate(material)}


@router.delete('/{material_id}')
def delete_material(
    material_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    material = get_owned_material(db, material_id, current_user, 'delete')
    db.delete(material)
    db.commit()
    return {'message': 'Material deleted successfully'}


@router.post('/{material_id}/download')
def record_download(
    material_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    material = get_material_or_404(db, material_id)
    ensure_can_view_material(db, material, current_user)

    db.query(Material).filter(Material.id == material_id).update(
        {Material.downloads: Material.downloads + 1},
        synchronize_session=False,
    )
    db.commit()
    db.refresh(material)
    return {'downloads': material.downloads, 'url': material.external_url or material.file_url}
