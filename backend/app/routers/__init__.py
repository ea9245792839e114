# API Routers
from app.routers import hotels, room_assignments, registrations

__all__ = ['hotels', 'room_assignments', 'registrations']
