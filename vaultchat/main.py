from dotenv import load_dotenv

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware

from .chat import routers as chat_router
from .directory import routers as directory_router

from .core.dependencies import verify_token
from .core.middleware import logging_middleware
from .utils.env_helper import env_list
from .utils.logging_config import setup_logging

load_dotenv()
setup_logging()

app = FastAPI(title="VaultChat")
app.include_router(directory_router.router, prefix="/directory", tags=["Directory"])
app.include_router(chat_router.router, prefix="/chat", tags=["Chat"])


origins = env_list(
    "CORS_ORIGINS",
    default=[
        "http://localhost:5173",
        "http://localhost:8080",
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(logging_middleware)


@app.get("/protected")
def protected_route(user=Depends(verify_token)):
    return {"message": f"Hello {user.get('email')}, you are authenticated!"}
