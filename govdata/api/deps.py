"""Request dependencies."""

from fastapi import Request

from govdata.ingestion.manager import DataSourceManager


def get_manager(request: Request) -> DataSourceManager:
    """The manager owned by the running application."""
    return request.app.state.manager
