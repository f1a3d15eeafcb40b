from app.routers import risk_workflow

__all__ = ["risk_workflow"]
