"""
Batch Error Handling Module
Categorizes compression failures per file and summarizes them at the end of a
CLI batch so one bad input does not hide the others.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .errors import CompressionError, ErrorCategory

logger = logging.getLogger(__name__)


SUGGESTIONS = {
    ErrorCategory.UNSUPPORTED_ENVIRONMENT: [
        "Install FFmpeg and make sure ffmpeg and ffprobe are on PATH",
        "Point compression.engine.ffmpeg_path at an existing binary",
    ],
    ErrorCategory.INITIALIZATION: [
        "Retry; a failed load is attempted again on the next call",
        "Run 'ffmpeg -version' to check the installation",
    ],
    ErrorCategory.ENCODER: [
        "Check video file integrity",
        "Force H.264 with --codec h264",
        "Update FFmpeg installation",
    ],
    ErrorCategory.TIMEOUT: [
        "Lower --max-width/--max-height or use --quality fast",
        "Raise compression.timeout.max_seconds",
    ],
    ErrorCategory.INPUT: [
        "Check that the file is a readable video",
        "Convert to a standard container first",
    ],
    ErrorCategory.CANCELLED: [],
}


@dataclass
class ProcessingError:
    """Structured representation of one failed file"""
    category: ErrorCategory
    message: str
    file_path: str
    exception_type: str
    severity: str  # 'info', 'warning', 'error', 'critical'
    suggestions: List[str]
    retryable: bool = False
    context: Optional[str] = None

    def get_short_description(self) -> str:
        return f"{self.category.value}: {self.message}"

    def get_detailed_description(self) -> str:
        base = f"Error in {self.file_path}: {self.message}"
        if self.context:
            base += f" (Context: {self.context})"

        if self.suggestions:
            base += "\nSuggestions:\n" + "\n".join(f"  • {s}" for s in self.suggestions)

        return base


class ErrorHandler:
    """Centralized error categorization for batch compression"""

    def __init__(self):
        self.error_counts = {category: 0 for category in ErrorCategory}
        self.processed_errors: List[ProcessingError] = []

    @staticmethod
    def _severity_for(category: ErrorCategory) -> str:
        if category is ErrorCategory.CANCELLED:
            return 'info'
        if category is ErrorCategory.UNSUPPORTED_ENVIRONMENT:
            return 'critical'
        if category in (ErrorCategory.TIMEOUT, ErrorCategory.INPUT):
            return 'warning'
        return 'error'

    def categorize_error(self, exception: Exception, file_path: str,
                         context: str = None) -> ProcessingError:
        """Categorize an exception into a structured ProcessingError"""
        if isinstance(exception, CompressionError):
            category = exception.category
            retryable = exception.retryable
        elif isinstance(exception, (FileNotFoundError, PermissionError, IsADirectoryError)):
            category = ErrorCategory.INPUT
            retryable = False
        else:
            category = ErrorCategory.GENERAL
            retryable = True

        return ProcessingError(
            category=category,
            message=str(exception),
            file_path=file_path,
            exception_type=type(exception).__name__,
            severity=self._severity_for(category),
            suggestions=list(self.get_category_suggestions(category)),
            retryable=retryable,
            context=context,
        )

    def handle_error(self, exception: Exception, file_path: str,
                     context: str = None, continue_processing: bool = True) -> ProcessingError:
        """Categorize an error, count it and log it at its severity"""
        error = self.categorize_error(exception, file_path, context)
        self.processed_errors.append(error)
        self.error_counts[error.category] += 1

        if error.severity == 'critical':
            logger.error(f"CRITICAL ERROR: {error.get_short_description()}")
            logger.error(f"Details: {error.get_detailed_description()}")
        elif error.severity == 'error':
            logger.error(f"ERROR: {error.get_short_description()}")
            if error.suggestions:
                logger.info(f"Suggestions: {'; '.join(error.suggestions[:2])}")
        elif error.severity == 'warning':
            logger.warning(f"WARNING: {error.get_short_description()}")
        else:
            logger.info(error.get_short_description())

        if continue_processing and error.category is not ErrorCategory.CANCELLED:
            logger.info(f"Continuing batch despite {error.category.value} error")

        return error

    def get_error_summary(self) -> Dict[str, Any]:
        """Summary of every error handled since the last reset"""
        total_errors = len(self.processed_errors)
        if total_errors == 0:
            return {'total_errors': 0, 'categories': {}, 'success_rate': 100.0}

        category_counts = {cat.value: count for cat, count in self.error_counts.items() if count > 0}

        severity_counts: Dict[str, int] = {}
        for error in self.processed_errors:
            severity_counts[error.severity] = severity_counts.get(error.severity, 0) + 1
        retryable_count = sum(1 for error in self.processed_errors if error.retryable)

        return {
            'total_errors': total_errors,
            'categories': category_counts,
            'severity_distribution': severity_counts,
            'most_common_category': max(category_counts.items(), key=lambda x: x[1])[0],
            'critical_errors': severity_counts.get('critical', 0),
            'retryable_errors': retryable_count,
            'non_retryable_errors': total_errors - retryable_count,
        }

    def get_top_failures(self, limit: int = 3) -> List[Dict[str, Any]]:
        """Ranked failure categories with the latest message for each"""
        if limit <= 0 or not self.processed_errors:
            return []
        category_counts: Dict[str, int] = {}
        sample_messages: Dict[str, str] = {}
        for error in self.processed_errors:
            key = error.category.value
            category_counts[key] = category_counts.get(key, 0) + 1
            sample_messages[key] = error.message
        ranked = sorted(category_counts.items(), key=lambda item: item[1], reverse=True)[:limit]
        return [
            {'category': category, 'count': count, 'sample_message': sample_messages[category]}
            for category, count in ranked
        ]

    def log_batch_summary(self, total_files: int, successful_files: int):
        failed_files = total_files - successful_files
        success_rate = (successful_files / total_files * 100) if total_files > 0 else 0

        logger.info("=== BATCH COMPRESSION SUMMARY ===")
        logger.info(f"Total files: {total_files}, Successful: {successful_files}, Failed: {failed_files}")
        logger.info(f"Success rate: {success_rate:.1f}%")

        if failed_files == 0:
            return

        logger.error("Error breakdown by category:")
        for category, count in self.error_counts.items():
            if count > 0:
                percentage = (count / failed_files) * 100
                logger.error(f"  • {category.value}: {count} files ({percentage:.1f}% of failures)")

        for failure in self.get_top_failures():
            category = ErrorCategory(failure['category'])
            suggestions = self.get_category_suggestions(category)
            if suggestions:
                logger.info(f"For {failure['count']} {category.value} failures:")
                for suggestion in suggestions:
                    logger.info(f"  • {suggestion}")

        if successful_files == 0:
            logger.error("Every file failed - check the FFmpeg installation and configuration")

    @staticmethod
    def get_category_suggestions(category: ErrorCategory) -> List[str]:
        return SUGGESTIONS.get(category, ["Retry operation", "Check logs for more details"])

    def reset(self):
        """Reset error tracking for a new batch"""
        self.error_counts = {category: 0 for category in ErrorCategory}
        self.processed_errors.clear()
