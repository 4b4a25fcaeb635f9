"""
Prescriptions API Router
Endpoints for medications, care providers and prescriptions
"""

from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from api.deps import get_db, get_current_user_id, services
from api.schedules import change_response
from api.schemas.prescription import (
    MedicationCreate,
    CareProviderCreate,
    PrescriptionCreate,
    PrescriptionUpdate,
    MedicationResponse,
    CareProviderResponse,
    PrescriptionResponse,
    PrescriptionDetail,
)
from api.schemas.schedule import ScheduleCreate, ScheduleChangeResponse


router = APIRouter(tags=["prescriptions"])


def prescription_detail(prescription) -> PrescriptionDetail:
    return PrescriptionDetail(
        **PrescriptionResponse.model_validate(prescription).model_dump(),
        medication=MedicationResponse.model_validate(prescription.medication),
        schedule_ids=[s.id for s in prescription.schedules],
    )


# ==================== MEDICATIONS ====================

@router.post("/medications", response_model=MedicationResponse, status_code=status.HTTP_201_CREATED)
async def create_medication(
    medication_data: MedicationCreate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Add a medication, optionally with its starting stock
    """
    prescription_service = services.get_prescription_service()

    medication = await prescription_service.create_medication(
        user_id=user_id,
        name=medication_data.name,
        brand_name=medication_data.brand_name,
        form=medication_data.form,
        strength_value=medication_data.strength_value,
        strength_unit=medication_data.strength_unit,
        notes=medication_data.notes,
        inventory=medication_data.inventory.model_dump() if medication_data.inventory else None,
        db=db
    )
    return MedicationResponse.model_validate(medication)


@router.get("/medications", response_model=List[MedicationResponse])
async def list_medications(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    prescription_service = services.get_prescription_service()
    medications = await prescription_service.list_medications(user_id, db=db)
    return [MedicationResponse.model_validate(m) for m in medications]


@router.get("/medications/{medication_id}", response_model=MedicationResponse)
async def get_medication(
    medication_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    prescription_service = services.get_prescription_service()
    medication = await prescription_service.get_medication(user_id, medication_id, db=db)
    return MedicationResponse.model_validate(medication)


@router.post("/providers", response_model=CareProviderResponse, status_code=status.HTTP_201_CREATED)
async def create_care_provider(
    provider_data: CareProviderCreate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    prescription_service = services.get_prescription_service()
    provider = await prescription_service.create_care_provider(
        user_id=user_id,
        **provider_data.model_dump(),
        db=db
    )
    return CareProviderResponse.model_validate(provider)


# ==================== PRESCRIPTIONS ====================

@router.post("/prescriptions", response_model=PrescriptionDetail, status_code=status.HTTP_201_CREATED)
async def create_prescription(
    prescription_data: PrescriptionCreate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Prescribe one of the caller's medications
    """
    prescription_service = services.get_prescription_service()

    prescription = await prescription_service.create_prescription(
        user_id=user_id,
        **prescription_data.model_dump(),
        db=db
    )
    return prescription_detail(prescription)


@router.get("/prescriptions", response_model=List[PrescriptionDetail])
async def list_prescriptions(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    prescription_service = services.get_prescription_service()
    prescriptions = await prescription_service.list_prescriptions(user_id, db=db)
    return [prescription_detail(p) for p in prescriptions]


@router.get("/prescriptions/{prescription_id}", response_model=PrescriptionDetail)
async def get_prescription(
    prescription_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    prescription_service = services.get_prescription_service()
    prescription = await prescription_service.get_prescription(user_id, prescription_id, db=db)
    return prescription_detail(prescription)


@router.patch("/prescriptions/{prescription_id}", response_model=PrescriptionDetail)
async def update_prescription(
    prescription_id: int,
    update_data: PrescriptionUpdate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Update a prescription. Switching to as-needed or moving the end date
    earlier removes the scheduled doses that no longer apply.
    """
    prescription_service = services.get_prescription_service()

    prescription = await prescription_service.update_prescription(
        user_id,
        prescription_id,
        update_data.model_dump(exclude_unset=True),
        db=db
    )
    return prescription_detail(prescription)


@router.delete("/prescriptions/{prescription_id}")
async def delete_prescription(
    prescription_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    prescription_service = services.get_prescription_service()
    await prescription_service.delete_prescription(user_id, prescription_id, db=db)
    return {"success": True, "message": "Prescription deleted"}


@router.post(
    "/prescriptions/{prescription_id}/schedules",
    response_model=ScheduleChangeResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_schedule(
    prescription_id: int,
    schedule_data: ScheduleCreate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Add a schedule to a prescription and materialize its first weeks of doses.
    Rejected with 409 when it overlaps another schedule of the caller.
    """
    schedule_service = services.get_schedule_service()

    result = await schedule_service.create_schedule(
        user_id=user_id,
        prescription_id=prescription_id,
        **schedule_data.model_dump(),
        db=db
    )
    return change_response(result)
