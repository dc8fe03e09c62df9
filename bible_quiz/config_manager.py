"""
Configuration manager for Bible Quiz Bot settings and parameters.
"""
import logging
from typing import Optional, Dict, Any, List
from pathlib import Path
import os

from .models import DEFAULT_CATEGORY, QuizSettings


class ConfigManager:
    """Manages bot configuration settings and quiz parameters."""

    # Default configuration values
    DEFAULT_TIMER_DURATION = 60
    DEFAULT_LEADERBOARD_SIZE = 10
    DEFAULT_ACTIVE_WINDOW_HOURS = 24
    DEFAULT_DATA_DIRECTORY = "./data/"

    # Validation limits
    MIN_TIMER_DURATION = 5
    MAX_TIMER_DURATION = 300  # 5 minutes
    MIN_LEADERBOARD_SIZE = 1
    MAX_LEADERBOARD_SIZE = 50
    MIN_ACTIVE_WINDOW_HOURS = 1
    MAX_ACTIVE_WINDOW_HOURS = 720  # 30 days

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._global_settings = QuizSettings()
        self._data_directory = self.DEFAULT_DATA_DIRECTORY
        self._admin_emails: List[str] = []

    def get_quiz_settings(self) -> QuizSettings:
        """
        Get current quiz settings.

        Returns:
            QuizSettings object with current configuration
        """
        return QuizSettings(
            timer_duration=self._global_settings.timer_duration,
            leaderboard_size=self._global_settings.leaderboard_size,
            category=self._global_settings.category,
            active_window_hours=self._global_settings.active_window_hours
        )

    def load_from_dict(self, config: Dict[str, Any]) -> List[str]:
        """
        Apply settings from a parsed config.json.

        Invalid values are skipped and the defaults kept.

        Returns:
            User-friendly messages for every setting that was rejected
        """
        rejected = []
        quiz_config = config.get('quiz', {}) or {}
        admin_config = config.get('admin', {}) or {}

        results = []
        if 'data_directory' in quiz_config:
            results.append(self.set_data_directory(quiz_config['data_directory']))
        if 'default_timer_duration' in quiz_config:
            results.append(self.set_timer_duration(quiz_config['default_timer_duration']))
        if 'leaderboard_size' in quiz_config:
            results.append(self.set_leaderboard_size(quiz_config['leaderboard_size']))
        if 'default_category' in quiz_config:
            results.append(self.set_category(quiz_config['default_category']))
        if 'active_window_hours' in admin_config:
            results.append(self.set_active_window_hours(admin_config['active_window_hours']))
        if 'admin_emails' in admin_config:
            results.append(self.set_admin_emails(admin_config['admin_emails']))

        for result in results:
            if not result['success']:
                rejected.append(result['user_message'])

        if rejected:
            self.logger.warning(f"Configuration applied with {len(rejected)} rejected settings")
        else:
            self.logger.info("Configuration applied successfully")
        return rejected

    def _range_error(self, name: str, value: Any, minimum: int, maximum: int, unit: str = "") -> Optional[Dict[str, Any]]:
        if isinstance(value, bool) or not isinstance(value, int):
            error_msg = f"{name} must be an integer, got {type(value).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(value).__name__}"
            }
        if value < minimum:
            error_msg = f"{name} must be at least {minimum}{unit}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ {name} too small: Minimum is {minimum}{unit}"
            }
        if value > maximum:
            error_msg = f"{name} cannot exceed {maximum}{unit}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ {name} too large: Maximum is {maximum}{unit}"
            }
        return None

    def set_timer_duration(self, duration: int) -> Dict[str, Any]:
        """
        Set the timer duration for each question.

        Args:
            duration: Timer duration in seconds

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        error = self._range_error(
            "Timer duration", duration, self.MIN_TIMER_DURATION, self.MAX_TIMER_DURATION, " seconds"
        )
        if error:
            return error

        self._global_settings.timer_duration = duration
        self.logger.info(f"Timer duration set to {duration} seconds")
        return {
            'success': True,
            'message': f"Timer duration set to {duration} seconds",
            'user_message': f"✅ Timer set to {duration} seconds"
        }

    def get_timer_duration(self) -> int:
        return self._global_settings.timer_duration

    def set_leaderboard_size(self, size: int) -> Dict[str, Any]:
        """
        Set how many players the leaderboard shows.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        error = self._range_error(
            "Leaderboard size", size, self.MIN_LEADERBOARD_SIZE, self.MAX_LEADERBOARD_SIZE
        )
        if error:
            return error

        self._global_settings.leaderboard_size = size
        self.logger.info(f"Leaderboard size set to {size}")
        return {
            'success': True,
            'message': f"Leaderboard size set to {size}",
            'user_message': f"✅ Leaderboard shows the top {size} players"
        }

    def get_leaderboard_size(self) -> int:
        return self._global_settings.leaderboard_size

    def set_active_window_hours(self, hours: int) -> Dict[str, Any]:
        """
        Set the window used to count a user as active.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        error = self._range_error(
            "Active window", hours, self.MIN_ACTIVE_WINDOW_HOURS, self.MAX_ACTIVE_WINDOW_HOURS, " hours"
        )
        if error:
            return error

        self._global_settings.active_window_hours = hours
        self.logger.info(f"Active user window set to {hours} hours")
        return {
            'success': True,
            'message': f"Active user window set to {hours} hours",
            'user_message': f"✅ Users active in the last {hours} hours count as active"
        }

    def get_active_window_hours(self) -> int:
        return self._global_settings.active_window_hours

    def set_category(self, category: str) -> Dict[str, Any]:
        """
        Set the category offered by default.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(category, str) or not category.strip():
            error_msg = "Category must be a non-empty string"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Category cannot be empty"
            }

        self._global_settings.category = category.strip()
        self.logger.info(f"Default category set to '{category.strip()}'")
        return {
            'success': True,
            'message': f"Default category set to {category.strip()}",
            'user_message': f"✅ Default category set to {category.strip()}"
        }

    def get_category(self) -> str:
        return self._global_settings.category

    def set_admin_emails(self, emails: List[str]) -> Dict[str, Any]:
        """
        Restrict admin access to the given emails. An empty list allows any signed-in account.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(emails, list) or not all(isinstance(e, str) for e in emails):
            error_msg = "Admin emails must be a list of strings"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Invalid input: Expected a list of email addresses"
            }

        self._admin_emails = [e.strip().lower() for e in emails if e.strip()]
        self.logger.info(f"Admin access restricted to {len(self._admin_emails)} emails")
        return {
            'success': True,
            'message': f"{len(self._admin_emails)} admin emails configured",
            'user_message': f"✅ {len(self._admin_emails)} admin emails configured"
        }

    def get_admin_emails(self) -> List[str]:
        return list(self._admin_emails)

    def is_admin_email(self, email: Optional[str]) -> bool:
        if not self._admin_emails:
            return True
        return (email or "").strip().lower() in self._admin_emails

    def set_data_directory(self, directory: str) -> Dict[str, Any]:
        """
        Set the directory holding the data files.

        Args:
            directory: Path to data directory

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(directory, str):
            error_msg = f"Data directory must be a string, got {type(directory).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a path string, got {type(directory).__name__}"
            }

        if not directory.strip():
            error_msg = "Data directory cannot be empty"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Directory path cannot be empty"
            }

        try:
            normalized_path = str(Path(directory).resolve())
        except (OSError, ValueError) as e:
            error_msg = f"Invalid directory path format: {e}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid path format: {directory}"
            }

        system_dirs = ['/bin', '/usr', '/etc', '/sys', '/proc', 'C:\\Windows', 'C:\\Program Files']
        if any(normalized_path.startswith(sys_dir) for sys_dir in system_dirs):
            error_msg = f"Cannot use system directory: {normalized_path}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Cannot use system directory: {directory}"
            }

        self._data_directory = normalized_path
        self.logger.info(f"Data directory set to {normalized_path}")
        return {
            'success': True,
            'message': f"Data directory set to {normalized_path}",
            'user_message': f"✅ Data directory set to {normalized_path}"
        }

    def get_data_directory(self) -> str:
        return self._data_directory

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

        checks = [
            ("timer duration", self._global_settings.timer_duration,
             self.MIN_TIMER_DURATION, self.MAX_TIMER_DURATION),
            ("leaderboard size", self._global_settings.leaderboard_size,
             self.MIN_LEADERBOARD_SIZE, self.MAX_LEADERBOARD_SIZE),
            ("active window", self._global_settings.active_window_hours,
             self.MIN_ACTIVE_WINDOW_HOURS, self.MAX_ACTIVE_WINDOW_HOURS),
        ]
        for name, value, minimum, maximum in checks:
            if not isinstance(value, int) or value < minimum or value > maximum:
                validation_result["valid"] = False
                validation_result["issues"].append(f"Invalid {name}: {value}")

        if not isinstance(self._data_directory, str) or not self._data_directory.strip():
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid data directory: {self._data_directory}")

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        admins = f"{len(self._admin_emails)} configured" if self._admin_emails else "any signed-in account"
        return (
            f"Quiz Settings:\n"
            f"• Category: {self._global_settings.category}\n"
            f"• Timer: {self._global_settings.timer_duration} seconds\n"
            f"• Leaderboard: top {self._global_settings.leaderboard_size}\n"
            f"• Active window: {self._global_settings.active_window_hours} hours\n"
            f"• Admins: {admins}\n"
            f"• Data Directory: {self._data_directory}"
        )

    def get_configuration_health_check(self) -> Dict[str, Any]:
        """
        Check the configuration and the data directory.

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
            health_check['errors'].extend(f"❌ {issue}" for issue in validation_result['issues'])

        data_dir = Path(self._data_directory)
        if not data_dir.exists():
            health_check['warnings'].append(
                f"⚠️ Data directory does not exist: {self._data_directory}"
            )
            health_check['recommendations'].append(
                "The data directory will be created automatically on first load."
            )
        elif not os.access(data_dir, os.R_OK | os.W_OK):
            health_check['healthy'] = False
            health_check['errors'].append(
                f"❌ Cannot read or write data directory: {self._data_directory}"
            )
            health_check['recommendations'].append(
                "Check file permissions for the data directory."
            )

        if not self._admin_emails:
            health_check['warnings'].append(
                "⚠️ No admin emails configured; any signed-in account can manage questions"
            )

        if self._global_settings.timer_duration < 10:
            health_check['warnings'].append(
                f"⚠️ Short timer duration ({self._global_settings.timer_duration}s) may not give players enough time"
            )

        return health_check
