from io import BytesIO

import pytest
from fastapi import HTTPException, UploadFile
from pydantic import ValidationError
from starlette.datastructures import Headers

from tutorhq.models.material import Material
from tutorhq.models.notification import Notification
from tutorhq.models.tutoring_class import ClassEnrollment, TutoringClass
from tutorhq.routes import material_routes
from tutorhq.routes.material_routes import (
    CreateMaterialRequest,
    UpdateMaterialRequest,
    create_material,
    delete_material,
    get_material,
    list_class_materials,
    list_student_materials,
    list_tutor_materials,
    record_download,
    update_material,
    upload_material_file,
)


@pytest.fixture
def classroom(db, make_user):
    tutor = make_user('tutor')
    student = make_user('student')
    tutoring_class = TutoringClass(title='Algebra', subject='math', tutor_id=tutor.id)
    db.add(tutoring_class)
    db.flush()
    db.add(ClassEnrollment(class_id=tutoring_class.id, student_id=student.id))
    db.commit()
    return tutor, student, tutoring_class


def _create(db, tutor, class_id, **overrides):
    payload = {'title': 'Notes', 'class_id': class_id, 'file_url': 'https://files/notes.pdf', 'status': 'published'}
    payload.update(overrides)
    return create_material(CreateMaterialRequest(**payload), db=db, current_user=tutor)['material']


def _upload(filename: str, contents: bytes) -> UploadFile:
    return UploadFile(file=BytesIO(contents), filename=filename, headers=Headers({'content-type': 'application/pdf'}))


def test_link_materials_need_external_url() -> None:
    with pytest.raises(ValidationError) as exception_info:
        CreateMaterialRequest(title='Video', classId='c', type='link')
    assert 'externalUrl is required for link materials' in str(exception_info.value)

    with pytest.raises(ValidationError) as exception_info:
        CreateMaterialRequest(title='Doc', classId='c', type='doc')
    assert 'fileUrl is required for uploaded materials' in str(exception_info.value)


def test_material_types_default_to_pdf() -> None:
    request = CreateMaterialRequest(title='Notes', classId='c', fileUrl='https://files/notes.pdf')
    assert request.type == 'pdf'

    for material_type in ('image', 'audio', 'slides'):
        assert CreateMaterialRequest(title='N', classId='c', fileUrl='u', type=material_type).type == material_type
    with pytest.raises(ValidationError):
        CreateMaterialRequest(title='N', classId='c', fileUrl='u', type='document')


def test_update_rejects_explicit_nulls() -> None:
    with pytest.raises(ValidationError) as exception_info:
        UpdateMaterialRequest.model_validate({'title': None})
    assert 'title cannot be null' in str(exception_info.value)

    assert UpdateMaterialRequest.model_validate({'description': None}).updates() == {'description': None}


def test_upload_stores_file_in_bucket(make_user, bucket) -> None:
    tutor = make_user('tutor')

    result = upload_material_file(file=_upload('notes.pdf', b'%PDF-1.4 data'), current_user=tutor)

    path, contents, options = bucket.uploads[0]
    assert path.startswith(f'{tutor.id}/')
    assert contents == b'%PDF-1.4 data'
    assert options == {'content-type': 'application/pdf'}
    assert result['fileUrl'] == f'https://storage.example.com/{path}'
    assert result['fileSize'] == len(b'%PDF-1.4 data')
    assert bucket.names == ['materials']


def test_upload_rejects_files_over_limit(make_user, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(material_routes.config, 'MAX_UPLOAD_BYTES', 4)

    with pytest.raises(HTTPException) as exception_info:
        upload_material_file(file=_upload('big.pdf', b'12345'), current_user=make_user('tutor'))

    assert exception_info.value.status_code == 413


def test_create_material_notifies_students_when_published(db, classroom) -> None:
    tutor, student, tutoring_class = classroom

    material = _create(db, tutor, tutoring_class.id)

    assert material.downloads == 0
    notice = db.query(Notification).filter(Notification.user_id == student.id).one()
    assert notice.type == 'material_uploaded'


def test_create_material_requires_class_owner(db, make_user, classroom) -> None:
    _, _, tutoring_class = classroom

    with pytest.raises(HTTPException) as exception_info:
        _create(db, make_user('tutor'), tutoring_class.id)

    assert exception_info.value.status_code == 403


def test_students_see_only_published_materials(db, make_user, classroom) -> None:
    tutor, student, tutoring_class = classroom
    _create(db, tutor, tutoring_class.id, title='Draft', status='draft')
    _create(db, tutor, tutoring_class.id, title='Live')

    assert [item.title for item in list_class_materials(tutoring_class.id, db=db, current_user=student)['materials']] == ['Live']
    assert len(list_class_materials(tutoring_class.id, db=db, current_user=tutor)['materials']) == 2
    assert len(list_tutor_materials(db=db, current_user=tutor)['materials']) == 2
    assert [item.title for item in list_student_materials(student.id, db=db, current_user=student)['materials']] == ['Live']
    with pytest.raises(HTTPException):
        list_class_materials(tutoring_class.id, db=db, current_user=make_user('student'))


def test_get_material_hides_drafts_from_students(db, classroom) -> None:
    tutor, student, tutoring_class = classroom
    draft = _create(db, tutor, tutoring_class.id, status='draft')

    with pytest.raises(HTTPException) as exception_info:
        get_material(draft.id, db=db, current_user=student)
    assert exception_info.value.status_code == 403

    assert get_material(draft.id, db=db, current_user=tutor)['material'].id == draft.id


def test_update_and_delete_material(db, make_user, classroom) -> None:
    tutor, _, tutoring_class = classroom
    material = _create(db, tutor, tutoring_class.id)

    updated = update_material(material.id, UpdateMaterialRequest(title='Revised'), db=db, current_user=tutor)
    assert updated['material'].title == 'Revised'

    with pytest.raises(HTTPException) as exception_info:
        delete_material(material.id, db=db, current_user=make_user('tutor'))
    assert exception_info.value.status_code == 403

    delete_material(material.id, db=db, current_user=tutor)
    assert db.get(Material, material.id) is None


def test_record_download_increments_counter(db, classroom) -> None:
    tutor, student, tutoring_class = classroom
    material = _create(db, tutor, tutoring_class.id)

    record_download(material.id, db=db, current_user=student)
    result = record_download(material.id, db=db, current_user=student)

    assert result == {'downloads': 2, 'url': 'https://files/notes.pdf'}
