# main.py
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
from database import get_db, init_db
from routes import auth, users, tests, code, assessments, notifications
from routes.attempts import AssessmentWorkflowError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Coding Assessment API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(tests.router)
app.include_router(code.router)
app.include_router(assessments.router)
app.include_router(notifications.router)


@app.exception_handler(AssessmentWorkflowError)
async def assessment_workflow_error_handler(request: Request, exc: AssessmentWorkflowError):
    logger.info(f"{request.method} {request.url.path} rejected: {exc.code} ({exc.message})")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


@app.get("/")
async def root():
    return {"message": "Welcome to the Coding Assessment API"}


@app.on_event("startup")
async def startup_event():
    await init_db(get_db())

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)
