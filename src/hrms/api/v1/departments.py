"""Department CRUD for the active tenant.

Every call goes through TenantScopedRepository, so ids belonging to other
tenants behave exactly like ids that do not exist.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.hrms.api.deps import get_db, require_auth, require_role
from src.hrms.core.repository import TenantScopedRepository
from src.hrms.models.tenant import Department, UserRole
from src.hrms.schemas.department import DepartmentCreate, DepartmentResponse, DepartmentUpdate

router = APIRouter(prefix="/api/v1/departments", tags=["departments"], dependencies=[require_auth])

# Any signed-in user may read; writes follow the tenant role matrix.
can_edit = require_role(UserRole.ADMIN, UserRole.HR_MANAGER, UserRole.MANAGER)
can_delete = require_role(UserRole.ADMIN, UserRole.HR_MANAGER)


def get_department_repository(db: AsyncSession = Depends(get_db)) -> TenantScopedRepository[Department]:
    return TenantScopedRepository(Department, db)


@router.get("", response_model=list[DepartmentResponse])
async def list_departments(
    is_active: bool | None = None,
    repo: TenantScopedRepository[Department] = Depends(get_department_repository),
):
    filters = {} if is_active is None else {"is_active": is_active}
    return await repo.list(order_by=Department.name, **filters)


@router.post(
    "",
    response_model=DepartmentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[can_edit],
)
async def create_department(
    body: DepartmentCreate,
    repo: TenantScopedRepository[Department] = Depends(get_department_repository),
):
    department = await repo.create(**body.model_dump())
    await repo.session.commit()
    return department


@router.get("/{department_id}", response_model=DepartmentResponse)
async def get_department(
    department_id: str,
    repo: TenantScopedRepository[Department] = Depends(get_department_repository),
):
    department = await repo.find(department_id)
    if department is None:
        raise HTTPException(status_code=404, detail="Department not found")
    return department


@router.patch("/{department_id}", response_model=DepartmentResponse, dependencies=[can_edit])
async def update_department(
    department_id: str,
    body: DepartmentUpdate,
    repo: TenantScopedRepository[Department] = Depends(get_department_repository),
):
    department = await repo.update(department_id, **body.model_dump(exclude_unset=True))
    if department is None:
        raise HTTPException(status_code=404, detail="Department not found")
    await repo.session.commit()
    return department


@router.delete("/{department_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[can_delete])
async def delete_department(
    department_id: str,
    repo: TenantScopedRepository[Department] = Depends(get_department_repository),
):
    if not await repo.delete(department_id):
        raise HTTPException(status_code=404, detail="Department not found")
    await repo.session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
