from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ajarin.config import Settings, setup_logging, get_cors_settings
from ajarin.db.database import create_tables
from ajarin.errors import register_exception_handlers
from ajarin.user_service.api import routes_auth
from ajarin.course_service.api import routes_course
from ajarin.progress_service.api import routes_progress
from ajarin.assignment_service.api import routes_assignment
from ajarin.certificate_service.api import routes_certificate


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()
    setup_logging(settings.log_level)

    app = FastAPI(title="Ajarin API")
    app.state.settings = settings

    # CORS
    app.add_middleware(CORSMiddleware, **get_cors_settings(settings))
    register_exception_handlers(app)

    app.include_router(routes_auth.router, prefix="/api/auth")
    app.include_router(routes_course.course_router, prefix="/api/courses")
    app.include_router(routes_course.material_router, prefix="/api/materials")
    app.include_router(routes_progress.router, prefix="/api/progress")
    app.include_router(routes_assignment.router, prefix="/api/assignments")
    app.include_router(routes_certificate.router, prefix="/api/certificates")

    @app.on_event("startup")
    async def on_startup():
        await create_tables()

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
