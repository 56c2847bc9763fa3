"""Entry point for serving the workflow node engine."""

from .config import load_config
from .factory import create_app

config = load_config()
app = create_app(config)


def run():
    """Serve the application with uvicorn."""
    import uvicorn
    uvicorn.run("flowengine.main:app", **config.get_uvicorn_config())


if __name__ == "__main__":
    run()
