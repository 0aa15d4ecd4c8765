from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.responses import Response

from rolodex.core.config import settings
from rolodex.core.exceptions import OwnershipError
from rolodex.routers import audit, customers, exports, imports

OPENAPI_TAGS = [
    {"name": "Customers", "description": "Create, read, update, search and delete customers."},
    {"name": "Imports", "description": "Upload CSV files and track customer imports."},
    {"name": "Exports", "description": "Generate and download customer exports."},
    {"name": "Audit", "description": "Query, export and archive the customer audit trail."},
]

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.version,
    description=(
        "Multi-tenant customer directory with batch CSV imports, "
        "CSV/JSON/XLSX exports and a per-customer audit trail."
    ),
    openapi_tags=OPENAPI_TAGS,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Total-Count", "Content-Disposition"],
)


@app.middleware("http")
async def options_handler(request: Request, call_next):  # type: ignore[no-untyped-def]
    if request.method == "OPTIONS":
        origin = request.headers.get("origin", "*")
        return Response(
            status_code=200,
            headers={
                "Access-Control-Allow-Origin": origin,
                "Access-Control-Allow-Methods": "*",
                "Access-Control-Allow-Headers": "*",
                "Access-Control-Allow-Credentials": "true",
                "Access-Control-Max-Age": "86400",
            },
        )
    return await call_next(request)


@app.exception_handler(OwnershipError)
async def ownership_error_handler(request: Request, exc: OwnershipError) -> JSONResponse:
    return JSONResponse(status_code=403, content={"detail": str(exc)})


app.include_router(customers.router, prefix="/v1/customers", tags=["Customers"])
app.include_router(imports.router, prefix="/v1/imports", tags=["Imports"])
app.include_router(exports.router, prefix="/v1/exports", tags=["Exports"])
app.include_router(audit.router, prefix="/v1/audit", tags=["Audit"])


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "app": settings.APP_NAME,
        "version": settings.version,
        "domain": settings.APP_DOMAIN,
        "status": "running",
    }
