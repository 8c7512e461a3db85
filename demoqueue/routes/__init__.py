"""Routes package.

- auth: Twitch OAuth login, logout, current user
- submissions: submit/edit tracks, queue, carryover, SoundCloud oEmbed
- sessions: open/close submissions, list and delete sessions
- reviews: curator reviews and audience ratings
- xp: balances, history, queue moves, grants

All route modules register their routes via @app.route decorators
when imported.
"""

from . import auth  # noqa: F401
from . import submissions  # noqa: F401
from . import sessions  # noqa: F401
from . import reviews  # noqa: F401
from . import xp  # noqa: F401
