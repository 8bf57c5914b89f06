"""Exception types shared across syncwatch."""


class SyncwatchError(Exception):
    """Base class for syncwatch errors."""


class GatewayError(SyncwatchError):
    """An external system (GitHub, Jira, ...) failed or could not be reached."""

    def __init__(self, connector: str, message: str, status_code: int | None = None):
        super().__init__(f"{connector}: {message}")
        self.connector = connector
        self.status_code = status_code


class AlertNotFoundError(SyncwatchError):
    """The caller referenced an alert id that does not exist."""

    def __init__(self, alert_id: int):
        super().__init__(f"Alert not found: {alert_id}")
        self.alert_id = alert_id
