from app.routers import admin_members, auth, families, health, invitations, lists, notifications, realtime

__all__ = [
    "health",
    "auth",
    "families",
    "invitations",
    "notifications",
    "lists",
    "realtime",
    "admin_members",
]
