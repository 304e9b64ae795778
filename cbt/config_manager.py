"""
Configuration manager for CBT quiz server settings and limits.
"""
import logging
from typing import Optional, Dict, Any, List


class ConfigManager:
    """Manages server configuration, auth settings and quiz limits."""

    # Default configuration values
    DEFAULT_HOST = "127.0.0.1"
    DEFAULT_PORT = 8000
    DEFAULT_DATABASE_URL = "sqlite:///cbt.db"
    DEFAULT_SECRET_KEY = "change-me"
    DEFAULT_ALGORITHM = "HS256"
    DEFAULT_TOKEN_EXPIRE_MINUTES = 720
    DEFAULT_TIMER_TICK_SECONDS = 1.0
    DEFAULT_SESSION_RETENTION_MINUTES = 60
    DEFAULT_LOG_LEVEL = "INFO"
    DEFAULT_LOG_DIRECTORY = "./logs/"
    DEFAULT_CLASS_LABELS = [
        "Primary 1", "Primary 2", "Primary 3", "Primary 4", "Primary 5", "Primary 6",
        "JSS 1", "JSS 2", "JSS 3",
        "SS 1", "SS 2", "SS 3",
    ]

    # Validation limits
    MIN_PORT = 1
    MAX_PORT = 65535
    MIN_TOKEN_EXPIRE_MINUTES = 1
    MAX_TOKEN_EXPIRE_MINUTES = 43200  # 30 days
    MIN_TIMER_TICK_SECONDS = 0.1
    MAX_TIMER_TICK_SECONDS = 5.0
    MIN_SESSION_RETENTION_MINUTES = 1
    MAX_SESSION_RETENTION_MINUTES = 1440
    MIN_DURATION_MINUTES = 1
    MAX_DURATION_MINUTES = 600
    MIN_POINTS = 1
    MAX_POINTS = 100
    SUPPORTED_ALGORITHMS = ("HS256", "HS384", "HS512")
    LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self.reset_to_defaults()

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._host = self.DEFAULT_HOST
        self._port = self.DEFAULT_PORT
        self._database_url = self.DEFAULT_DATABASE_URL
        self._secret_key = self.DEFAULT_SECRET_KEY
        self._algorithm = self.DEFAULT_ALGORITHM
        self._token_expire_minutes = self.DEFAULT_TOKEN_EXPIRE_MINUTES
        self._bootstrap_admin: Optional[Dict[str, str]] = None
        self._timer_tick_seconds = self.DEFAULT_TIMER_TICK_SECONDS
        self._session_retention_minutes = self.DEFAULT_SESSION_RETENTION_MINUTES
        self._class_labels = list(self.DEFAULT_CLASS_LABELS)
        self._log_level = self.DEFAULT_LOG_LEVEL
        self._log_directory = self.DEFAULT_LOG_DIRECTORY
        self.logger.debug("All settings reset to default values")

    def _failure(self, error_msg: str, user_message: str) -> Dict[str, Any]:
        self.logger.error(error_msg)
        return {
            'success': False,
            'error': error_msg,
            'user_message': f"❌ {user_message}"
        }

    def _success(self, message: str, user_message: str) -> Dict[str, Any]:
        self.logger.info(message)
        return {
            'success': True,
            'message': message,
            'user_message': f"✅ {user_message}"
        }

    def _check_range(self, label: str, value: Any, minimum, maximum, unit: str = "",
                     number_type=int) -> Optional[Dict[str, Any]]:
        """Return a failure result if value is not a number_type within [minimum, maximum]."""
        accepted = (int, float) if number_type is float else (int,)
        if isinstance(value, bool) or not isinstance(value, accepted):
            return self._failure(
                f"{label} must be a{'n integer' if number_type is int else ' number'}, got {type(value).__name__}",
                f"Invalid input: Expected a number, got {type(value).__name__}"
            )
        if value < minimum:
            return self._failure(
                f"{label} must be at least {minimum}{unit}",
                f"{label} too small: Minimum is {minimum}{unit}"
            )
        if value > maximum:
            return self._failure(
                f"{label} cannot exceed {maximum}{unit}",
                f"{label} too large: Maximum is {maximum}{unit}"
            )
        return None

    def _check_text(self, label: str, value: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(value, str):
            return self._failure(
                f"{label} must be a string, got {type(value).__name__}",
                f"Invalid input: Expected text, got {type(value).__name__}"
            )
        if not value.strip():
            return self._failure(f"{label} cannot be empty", f"{label} cannot be empty")
        return None

    # Server

    def set_host(self, host: str) -> Dict[str, Any]:
        failure = self._check_text("Host", host)
        if failure:
            return failure
        self._host = host.strip()
        return self._success(f"Host set to {self._host}", f"Server will listen on {self._host}")

    def get_host(self) -> str:
        return self._host

    def set_port(self, port: int) -> Dict[str, Any]:
        """
        Set the port the HTTP server listens on.

        Args:
            port: TCP port number

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        failure = self._check_range("Port", port, self.MIN_PORT, self.MAX_PORT)
        if failure:
            return failure
        self._port = port
        return self._success(f"Port set to {port}", f"Server will listen on port {port}")

    def get_port(self) -> int:
        return self._port

    # Database

    def set_database_url(self, url: str) -> Dict[str, Any]:
        """
        Set the SQLAlchemy URL of the record store.

        Args:
            url: Database URL, e.g. sqlite:///cbt.db

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        failure = self._check_text("Database URL", url)
        if failure:
            return failure
        if "://" not in url:
            return self._failure(
                f"Database URL has no scheme: {url}",
                "Invalid database URL: expected something like sqlite:///cbt.db"
            )
        self._database_url = url.strip()
        return self._success("Database URL updated", "Database location updated")

    def get_database_url(self) -> str:
        return self._database_url

    # Auth

    def set_secret_key(self, secret_key: str) -> Dict[str, Any]:
        failure = self._check_text("Secret key", secret_key)
        if failure:
            return failure
        self._secret_key = secret_key
        return self._success("Secret key updated", "Token signing key updated")

    def get_secret_key(self) -> str:
        return self._secret_key

    def set_algorithm(self, algorithm: str) -> Dict[str, Any]:
        if algorithm not in self.SUPPORTED_ALGORITHMS:
            return self._failure(
                f"Unsupported token algorithm: {algorithm}",
                f"Token algorithm must be one of {', '.join(self.SUPPORTED_ALGORITHMS)}"
            )
        self._algorithm = algorithm
        return self._success(f"Token algorithm set to {algorithm}", f"Tokens will be signed with {algorithm}")

    def get_algorithm(self) -> str:
        return self._algorithm

    def set_token_expire_minutes(self, minutes: int) -> Dict[str, Any]:
        """
        Set how long issued session tokens stay valid.

        Args:
            minutes: Token lifetime in minutes

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        failure = self._check_range(
            "Token lifetime", minutes,
            self.MIN_TOKEN_EXPIRE_MINUTES, self.MAX_TOKEN_EXPIRE_MINUTES, " minutes"
        )
        if failure:
            return failure
        self._token_expire_minutes = minutes
        return self._success(f"Token lifetime set to {minutes} minutes", f"Sessions last {minutes} minutes")

    def get_token_expire_minutes(self) -> int:
        return self._token_expire_minutes

    def set_bootstrap_admin(self, admin: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Set the admin account created on startup when it does not exist.

        Args:
            admin: Mapping with email, password and optional full_name, or None

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if admin is None:
            self._bootstrap_admin = None
            return self._success("Bootstrap admin disabled", "No admin account will be created on startup")

        if not isinstance(admin, dict):
            return self._failure(
                f"Bootstrap admin must be an object, got {type(admin).__name__}",
                "Invalid bootstrap admin: expected email and password"
            )
        for key in ("email", "password"):
            failure = self._check_text(f"Bootstrap admin {key}", admin.get(key))
            if failure:
                return failure

        self._bootstrap_admin = {
            'email': admin['email'].strip(),
            'password': admin['password'],
            'full_name': admin.get('full_name') or "Administrator",
        }
        return self._success(
            f"Bootstrap admin set to {self._bootstrap_admin['email']}",
            f"Admin {self._bootstrap_admin['email']} will be ensured on startup"
        )

    def get_bootstrap_admin(self) -> Optional[Dict[str, str]]:
        return dict(self._bootstrap_admin) if self._bootstrap_admin else None

    # Quiz delivery

    def set_timer_tick_seconds(self, seconds: float) -> Dict[str, Any]:
        """
        Set the real time that elapses per counted second of a quiz timer.

        Args:
            seconds: Seconds per tick; 1.0 in production

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        failure = self._check_range(
            "Timer tick", seconds,
            self.MIN_TIMER_TICK_SECONDS, self.MAX_TIMER_TICK_SECONDS, " seconds",
            number_type=float
        )
        if failure:
            return failure
        self._timer_tick_seconds = float(seconds)
        return self._success(f"Timer tick set to {seconds} seconds", f"Timer tick set to {seconds} seconds")

    def get_timer_tick_seconds(self) -> float:
        return self._timer_tick_seconds

    def set_session_retention_minutes(self, minutes: int) -> Dict[str, Any]:
        failure = self._check_range(
            "Session retention", minutes,
            self.MIN_SESSION_RETENTION_MINUTES, self.MAX_SESSION_RETENTION_MINUTES, " minutes"
        )
        if failure:
            return failure
        self._session_retention_minutes = minutes
        return self._success(
            f"Session retention set to {minutes} minutes",
            f"Finished sessions are kept for {minutes} minutes"
        )

    def get_session_retention_minutes(self) -> int:
        return self._session_retention_minutes

    def set_class_labels(self, labels: List[str]) -> Dict[str, Any]:
        """
        Set the class labels students may register under.

        Args:
            labels: Non-empty list of distinct, non-blank labels

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(labels, list) or not labels:
            return self._failure(
                "Class labels must be a non-empty list",
                "Please provide at least one class"
            )
        cleaned = []
        for label in labels:
            failure = self._check_text("Class label", label)
            if failure:
                return failure
            if label.strip() in cleaned:
                return self._failure(f"Duplicate class label: {label}", f"Class {label} is listed twice")
            cleaned.append(label.strip())

        self._class_labels = cleaned
        return self._success(f"Class labels set to {', '.join(cleaned)}", f"{len(cleaned)} classes configured")

    def get_class_labels(self) -> List[str]:
        return list(self._class_labels)

    def is_valid_class_label(self, label: Optional[str]) -> bool:
        return label in self._class_labels

    # Logging

    def set_log_level(self, level: str) -> Dict[str, Any]:
        if not isinstance(level, str) or level.upper() not in self.LOG_LEVELS:
            return self._failure(
                f"Invalid log level: {level}",
                f"Log level must be one of {', '.join(self.LOG_LEVELS)}"
            )
        self._log_level = level.upper()
        return self._success(f"Log level set to {self._log_level}", f"Log level set to {self._log_level}")

    def get_log_level(self) -> str:
        return self._log_level

    def set_log_directory(self, directory: str) -> Dict[str, Any]:
        failure = self._check_text("Log directory", directory)
        if failure:
            return failure
        self._log_directory = directory
        return self._success(f"Log directory set to {directory}", f"Logs will be written to {directory}")

    def get_log_directory(self) -> str:
        return self._log_directory

    # Bulk loading

    def apply(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply the sections of a loaded config.json.

        Unknown keys are ignored. Every recognised key goes through its
        setter, so invalid values keep the previous setting.

        Args:
            config: Parsed configuration document

        Returns:
            Dictionary with overall success and the list of failed results
        """
        setters = {
            ('server', 'host'): self.set_host,
            ('server', 'port'): self.set_port,
            ('database', 'url'): self.set_database_url,
            ('auth', 'secret_key'): self.set_secret_key,
            ('auth', 'algorithm'): self.set_algorithm,
            ('auth', 'token_expire_minutes'): self.set_token_expire_minutes,
            ('auth', 'bootstrap_admin'): self.set_bootstrap_admin,
            ('quiz', 'timer_tick_seconds'): self.set_timer_tick_seconds,
            ('quiz', 'session_retention_minutes'): self.set_session_retention_minutes,
            ('quiz', 'class_labels'): self.set_class_labels,
            ('logging', 'level'): self.set_log_level,
            ('logging', 'log_directory'): self.set_log_directory,
        }

        failures = []
        for (section, key), setter in setters.items():
            values = config.get(section) or {}
            if key not in values:
                continue
            result = setter(values[key])
            if not result['success']:
                failures.append({'setting': f"{section}.{key}", **result})

        return {
            'success': not failures,
            'errors': failures
        }

    # Validation helpers shared with quiz authoring

    def validate_duration_minutes(self, minutes: Any) -> Optional[str]:
        """Return an error message if minutes is not an allowed quiz duration."""
        if isinstance(minutes, bool) or not isinstance(minutes, int):
            return "Duration must be a whole number of minutes"
        if not self.MIN_DURATION_MINUTES <= minutes <= self.MAX_DURATION_MINUTES:
            return (f"Duration must be between {self.MIN_DURATION_MINUTES} "
                    f"and {self.MAX_DURATION_MINUTES} minutes")
        return None

    def validate_points(self, points: Any) -> Optional[str]:
        """Return an error message if points is not an allowed question value."""
        if isinstance(points, bool) or not isinstance(points, int):
            return "Points must be a whole number"
        if not self.MIN_POINTS <= points <= self.MAX_POINTS:
            return f"Points must be between {self.MIN_POINTS} and {self.MAX_POINTS}"
        return None

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }

        def issue(text: str) -> None:
            validation_result["valid"] = False
            validation_result["issues"].append(text)

        if not isinstance(self._port, int) or not self.MIN_PORT <= self._port <= self.MAX_PORT:
            issue(f"Invalid port: {self._port}")

        if not isinstance(self._database_url, str) or "://" not in self._database_url:
            issue(f"Invalid database URL: {self._database_url}")

        if not self._secret_key:
            issue("Secret key is empty")

        if self._algorithm not in self.SUPPORTED_ALGORITHMS:
            issue(f"Invalid token algorithm: {self._algorithm}")

        if not (self.MIN_TOKEN_EXPIRE_MINUTES <= self._token_expire_minutes <= self.MAX_TOKEN_EXPIRE_MINUTES):
            issue(f"Invalid token lifetime: {self._token_expire_minutes}")

        if not (self.MIN_TIMER_TICK_SECONDS <= self._timer_tick_seconds <= self.MAX_TIMER_TICK_SECONDS):
            issue(f"Invalid timer tick: {self._timer_tick_seconds}")

        if not self._class_labels:
            issue("No class labels configured")

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        admin = self._bootstrap_admin['email'] if self._bootstrap_admin else "none"
        return (
            f"CBT Server Settings:\n"
            f"• Listen: {self._host}:{self._port}\n"
            f"• Database: {self._database_url}\n"
            f"• Token lifetime: {self._token_expire_minutes} minutes ({self._algorithm})\n"
            f"• Bootstrap admin: {admin}\n"
            f"• Timer tick: {self._timer_tick_seconds} seconds\n"
            f"• Session retention: {self._session_retention_minutes} minutes\n"
            f"• Classes: {', '.join(self._class_labels)}\n"
            f"• Logging: {self._log_level} to {self._log_directory}"
        )

    def get_configuration_health_check(self) -> Dict[str, Any]:
        """
        Perform a health check of the configuration.

        Returns:
            Dictionary with health status and recommendations
        """
        health_check = {
            'healthy': True,
            'warnings': [],
            'errors': [],
            'recommendations': []
        }

        validation_result = self.validate_settings()
        if not validation_result['valid']:
            health_check['healthy'] = False
            health_check['errors'].extend(
                f"❌ Configuration Issue: {issue}" for issue in validation_result['issues']
            )

        if self._secret_key == self.DEFAULT_SECRET_KEY:
            health_check['warnings'].append("⚠️ Using the default token signing key")
            health_check['recommendations'].append(
                "Set CBT_SECRET_KEY or auth.secret_key before exposing the server."
            )

        if self._timer_tick_seconds != 1.0:
            health_check['warnings'].append(
                f"⚠️ Timer tick is {self._timer_tick_seconds}s; quiz countdowns will not run in real time"
            )

        if self._bootstrap_admin is None:
            health_check['recommendations'].append(
                "Configure auth.bootstrap_admin so an administrator can sign in."
            )

        return health_check
