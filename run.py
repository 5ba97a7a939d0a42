"""Entry point: serves the devfactory API with uvicorn."""

import os

import uvicorn

from devfactory.app import create_app


def main() -> None:
    host = os.environ.get("DEVFACTORY_HOST", "0.0.0.0")
    port = int(os.environ.get("DEVFACTORY_PORT", "8080"))
    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    main()
