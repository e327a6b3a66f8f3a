"""Run the StreamRelay reference server: python3 -m streamrelay"""

import uvicorn

from streamrelay.config import settings


def main() -> None:
    uvicorn.run("streamrelay.api.app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
