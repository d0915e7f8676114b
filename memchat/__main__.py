import uvicorn

from memchat.application.api.api_server import create_app
from memchat.infrastructure.config.settings import Settings


def main():
    settings = Settings.from_env()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
