"""Rate window model.

Backs SQLWindowStore: one row per rate-limit key holding the request count
and the epoch second the current window started. Kept in the database so
counters survive a restart within the window.
"""

from payrelay.extensions import db


class RateWindow(db.Model):
    __tablename__ = "rate_windows"

    key = db.Column(db.String(255), primary_key=True)  # client IP or "global"
    count = db.Column(db.Integer, nullable=False, default=0)
    window_start = db.Column(db.Float, nullable=False)  # unix timestamp

    def __repr__(self):
        return f"<RateWindow {self.key} count={self.count}>"
