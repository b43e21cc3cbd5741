"""
Precinct — Personnel Backend for a Role-Play Police Department
===============================================================
Discord-authenticated dashboard API plus a companion bot that keeps the
employee roster in step with the department guild, accrues weekly bonuses,
posts announcements and calendar reminders, and pushes live updates to
connected dashboards.

Package layout::

    precinct/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Rank / unit vocabulary, permission catalogue
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # Permission / role / settings seeder
    ├── services/
    │   ├── event_bus.py   # PG LISTEN/NOTIFY between API and bot
    │   ├── roster_service.py    # Guild roster → users/employees
    │   ├── bonus_service.py     # Weekly bonus accrual + close-out
    │   ├── permission_cache.py  # 30 s principal cache
    │   ├── realtime.py          # WebSocket fan-out hub
    │   └── ...
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader
    │   └── cogs/
    │       ├── roster.py  # Periodic sync + member join/leave
    │       ├── tasks.py   # Heartbeat, bonus week close, reminders
    │       └── actions.py # Executes guild actions requested by the API
    └── api/
        ├── main.py        # FastAPI app
        ├── auth.py        # Discord OAuth2 → JWT
        ├── realtime.py    # /ws endpoint
        └── routes/        # Domain REST endpoints
"""

__version__ = "0.1.0"
