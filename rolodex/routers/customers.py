"""Customers router: CRUD, search and statistics."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy.orm import Session

from rolodex.core.auth import get_current_user, request_context
from rolodex.core.database import get_db
from rolodex.models.customer import Customer
from rolodex.schemas.customer import (
    CustomerCreate,
    CustomerFilters,
    CustomerResponse,
    CustomerStatistics,
    CustomerUpdate,
    SearchStatistics,
    SearchSuggestion,
)
from rolodex.services.customer_service import DUPLICATE_EMAIL_MESSAGE, CustomerService
from rolodex.services.search_service import SearchService

router = APIRouter()


def customer_filters(
    search: str | None = Query(default=None, max_length=255),
    organization: str | None = Query(default=None, max_length=255),
    job_title: str | None = Query(default=None, max_length=255),
    created_from: datetime | None = Query(default=None),
    created_to: datetime | None = Query(default=None),
    sort_by: str = Query(default="name"),
    sort_direction: Literal["asc", "desc"] = Query(default="asc"),
) -> CustomerFilters:
    return CustomerFilters(
        search=search,
        organization=organization,
        job_title=job_title,
        created_from=created_from,
        created_to=created_to,
        sort_by=sort_by,
        sort_direction=sort_direction,
    )


def _value_error(e: ValueError) -> HTTPException:
    status_code = 409 if str(e) == DUPLICATE_EMAIL_MESSAGE else 400
    return HTTPException(status_code=status_code, detail=str(e))


@router.get(
    "/",
    response_model=list[CustomerResponse],
    summary="List customers",
    responses={401: {"description": "Unauthorized"}},
)
async def list_customers(
    response: Response,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=15, ge=1, le=1000),
    filters: CustomerFilters = Depends(customer_filters),
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> list[Customer]:
    """List the user's customers, filtered and paginated."""
    customers, total = CustomerService(db).list_customers(user_id, filters, skip=skip, limit=limit)
    response.headers["X-Total-Count"] = str(total)
    return customers


@router.post(
    "/",
    response_model=CustomerResponse,
    status_code=201,
    summary="Create customer",
    responses={
        401: {"description": "Unauthorized"},
        409: {"description": "A customer with this email already exists"},
        422: {"description": "Validation error"},
    },
)
async def create_customer(
    data: CustomerCreate,
    request: Request,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> Customer:
    try:
        return CustomerService(db).create_customer(user_id, data, context=request_context(request))
    except ValueError as e:
        raise _value_error(e) from None


@router.get(
    "/statistics",
    response_model=CustomerStatistics,
    summary="Customer statistics",
    responses={401: {"description": "Unauthorized"}},
)
async def get_customer_statistics(
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> CustomerStatistics:
    return CustomerService(db).get_customer_statistics(user_id)


@router.get(
    "/search",
    response_model=list[CustomerResponse],
    summary="Search customers",
    responses={401: {"description": "Unauthorized"}},
)
async def search_customers(
    q: str = Query(..., max_length=255),
    limit: int = Query(default=50, ge=1, le=200),
    filters: CustomerFilters = Depends(customer_filters),
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> list[CustomerResponse]:
    """Full-text search over name and email; queries shorter than 2 characters match nothing."""
    return SearchService(db).search_customers_by_text(user_id, q, filters, limit=limit)


@router.get(
    "/search/statistics",
    response_model=SearchStatistics,
    summary="Statistics for a filtered selection",
    responses={401: {"description": "Unauthorized"}},
)
async def get_search_statistics(
    filters: CustomerFilters = Depends(customer_filters),
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> SearchStatistics:
    return SearchService(db).get_search_statistics(user_id, filters)


@router.get(
    "/suggestions",
    response_model=list[SearchSuggestion],
    summary="Autocomplete suggestions",
    responses={
        400: {"description": "Unsupported field"},
        401: {"description": "Unauthorized"},
    },
)
async def get_search_suggestions(
    field: str = Query(...),
    q: str = Query(default="", max_length=255),
    limit: int = Query(default=10, ge=1, le=50),
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> list[SearchSuggestion]:
    try:
        return SearchService(db).get_search_suggestions(user_id, field, q, limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None


@router.get(
    "/organizations/{organization}",
    response_model=list[CustomerResponse],
    summary="Customers of an organization",
    responses={401: {"description": "Unauthorized"}},
)
async def get_customers_by_organization(
    organization: str,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> list[CustomerResponse]:
    return CustomerService(db).get_customers_by_organization(user_id, organization)


@router.get(
    "/slug/{slug}",
    response_model=CustomerResponse,
    summary="Get customer by slug",
    responses={
        401: {"description": "Unauthorized"},
        404: {"description": "Customer not found"},
    },
)
async def get_customer_by_slug(
    slug: str,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> CustomerResponse:
    customer = CustomerService(db).get_customer_by_slug(user_id, slug)
    if customer is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer


@router.get(
    "/{customer_id}",
    response_model=CustomerResponse,
    summary="Get customer",
    responses={
        401: {"description": "Unauthorized"},
        404: {"description": "Customer not found"},
    },
)
async def get_customer(
    customer_id: UUID,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> CustomerResponse:
    customer = CustomerService(db).get_customer(user_id, customer_id)
    if customer is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer


@router.put(
    "/{customer_id}",
    response_model=CustomerResponse,
    summary="Update customer",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Customer belongs to another user"},
        404: {"description": "Customer not found"},
        409: {"description": "A customer with this email already exists"},
        422: {"description": "Validation error"},
    },
)
async def update_customer(
    customer_id: UUID,
    data: CustomerUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> Customer:
    try:
        customer = CustomerService(db).update_customer(
            user_id, customer_id, data, context=request_context(request)
        )
    except ValueError as e:
        raise _value_error(e) from None
    if customer is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer


@router.delete(
    "/{customer_id}",
    status_code=204,
    summary="Delete customer",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Customer belongs to another user"},
        404: {"description": "Customer not found"},
    },
)
async def delete_customer(
    customer_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user),
) -> None:
    if not CustomerService(db).delete_customer(user_id, customer_id, context=request_context(request)):
        raise HTTPException(status_code=404, detail="Customer not found")
