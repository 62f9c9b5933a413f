"""
Email notification utilities for Roster Sync.

This module provides functionality to send email notifications for
sync failures, failsafe trips and run summaries.
"""

import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Dict, List, Any, Optional
from datetime import datetime

logger = logging.getLogger(__name__)

MAX_LISTED_ERRORS = 10


def format_runtime(runtime_seconds: float) -> str:
    if runtime_seconds > 60:
        minutes = int(runtime_seconds // 60)
        seconds = runtime_seconds % 60
        return f"{minutes}m {seconds:.1f}s"
    return f"{runtime_seconds:.2f} seconds"


def send_email(subject: str, body: str, config: Dict[str, Any]) -> bool:
    """
    Send email notification using SMTP.

    Args:
        subject: Email subject line
        body: Email body content
        config: Notification configuration dictionary

    Returns:
        True if email sent successfully, False otherwise
    """
    if not config.get('enable_email', False):
        logger.debug("Email notifications disabled")
        return False

    smtp_server = config.get('smtp_server')
    smtp_port = config.get('smtp_port', 587)
    smtp_username = config.get('smtp_username')
    smtp_password = config.get('smtp_password')
    smtp_tls = config.get('smtp_tls', True)

    email_from = config.get('email_from', smtp_username)
    email_to = config.get('email_to', [])

    if not smtp_server:
        logger.error("SMTP server not configured")
        return False

    if not email_to:
        logger.error("No email recipients configured")
        return False

    if isinstance(email_to, str):
        email_to = [email_to]

    logger.debug(f"Sending email to {len(email_to)} recipients via {smtp_server}:{smtp_port}")

    msg = MIMEMultipart()
    msg['From'] = email_from
    msg['To'] = ', '.join(email_to)
    msg['Subject'] = subject
    msg.attach(MIMEText(body, 'plain'))

    try:
        if smtp_port == 465:
            server = smtplib.SMTP_SSL(smtp_server, smtp_port)
        else:
            server = smtplib.SMTP(smtp_server, smtp_port)
            if smtp_tls:
                server.starttls()

        if smtp_username and smtp_password:
            server.login(smtp_username, smtp_password)

        server.sendmail(email_from, email_to, msg.as_string())
        server.quit()

    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email notification: {e}")
        return False

    logger.info(f"Email notification sent successfully: {subject}")
    return True


def send_failure_notification(
    title: str,
    error_message: str,
    config: Dict[str, Any],
    additional_info: Optional[Dict[str, Any]] = None
) -> bool:
    """
    Send notification for sync failures.

    Args:
        title: Failure title/type
        error_message: Error description
        config: Notification configuration
        additional_info: Optional additional context

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_failure', True):
        logger.debug("Failure email notifications disabled")
        return False

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')

    subject = f"Roster Sync Alert: {title}"

    body_lines = [
        "Roster Sync Failure Report",
        f"Timestamp: {timestamp}",
        "",
        f"Failure Type: {title}",
        f"Error Message: {error_message}",
        ""
    ]

    if additional_info:
        body_lines.append("Additional Information:")
        for key, value in additional_info.items():
            body_lines.append(f"  {key}: {value}")
        body_lines.append("")

    body_lines.extend([
        "Please check the application logs for more detailed information.",
        "",
        "This is an automated message from Roster Sync."
    ])

    return send_email(subject, '\n'.join(body_lines), config)


def send_fetch_failure(source: str, error_message: str, config: Dict[str, Any]) -> bool:
    """
    Send notification for a failed roster or directory fetch.

    Args:
        source: Which fetch failed ('Roster' or 'Directory')
        error_message: Error description
        config: Notification configuration

    Returns:
        True if notification sent successfully
    """
    additional_info = {
        'Component': f"{source} Fetch",
        'Impact': 'Sync aborted before reconciliation - no directory changes made'
    }

    return send_failure_notification(f"{source} Fetch Failed", error_message, config, additional_info)


def send_failsafe_notification(run_stats: Dict[str, Any], limit: int, config: Dict[str, Any]) -> bool:
    """
    Send notification that the mutation failsafe stopped the run.

    Args:
        run_stats: Run statistics (RunState.as_dict())
        limit: Configured failsafe limit
        config: Notification configuration

    Returns:
        True if notification sent successfully
    """
    additional_info = {
        'Failsafe Limit': limit,
        'Changes Applied': run_stats.get('mutation_count', 0),
        'Impact': 'Run stopped early; changes already applied were kept'
    }

    return send_failure_notification(
        "Failsafe Tripped",
        f"More than {limit} directory changes were needed in one run",
        config,
        additional_info
    )


def send_error_summary(errors: List[str], config: Dict[str, Any]) -> bool:
    """
    Send notification listing the per-user errors of a run.

    Args:
        errors: Error messages
        config: Notification configuration

    Returns:
        True if notification sent successfully
    """
    lines = [f"{i}. {error}" for i, error in enumerate(errors[:MAX_LISTED_ERRORS], 1)]
    if len(errors) > MAX_LISTED_ERRORS:
        lines.append(f"... and {len(errors) - MAX_LISTED_ERRORS} more errors")

    return send_failure_notification(
        "Sync Completed With Errors",
        f"{len(errors)} error(s) during the run:\n" + '\n'.join(lines),
        config
    )


def send_success_summary(run_stats: Dict[str, Any], config: Dict[str, Any]) -> bool:
    """
    Send summary notification for successful sync.

    Args:
        run_stats: Run statistics (RunState.as_dict())
        config: Notification configuration

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_success', False):
        logger.debug("Success email notifications disabled")
        return False

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
    applied = run_stats.get('applied', {})

    body_lines = [
        "Roster Sync Summary Report",
        f"Timestamp: {timestamp}",
        "",
        "Sync completed successfully!",
        "",
        "Statistics:",
        f"  Total runtime: {format_runtime(run_stats.get('runtime_seconds', 0))}",
        f"  Directory changes: {run_stats.get('mutation_count', 0)}",
    ]
    for kind, count in applied.items():
        body_lines.append(f"    {kind}: {count}")
    body_lines.extend([
        f"  Warnings: {run_stats.get('total_warnings', 0)}",
        "",
        "This is an automated message from Roster Sync."
    ])

    return send_email("Roster Sync: Successful Completion", '\n'.join(body_lines), config)


def test_notification_config(config: Dict[str, Any]) -> bool:
    """
    Test email notification configuration by sending a test email.

    Args:
        config: Notification configuration to test

    Returns:
        True if test email sent successfully
    """
    test_body = """This is a test email from Roster Sync.

If you receive this message, your email notification configuration is working correctly.

Test details:
- SMTP Server: {}
- SMTP Port: {}
- From Address: {}
- Recipients: {}

This is an automated test message.""".format(
        config.get('smtp_server', 'not configured'),
        config.get('smtp_port', 'not configured'),
        config.get('email_from', 'not configured'),
        ', '.join(config.get('email_to', []))
    )

    result = send_email("Roster Sync: Configuration Test", test_body, config)
    if result:
        logger.info("Test notification sent successfully")
    else:
        logger.error("Test notification failed")
    return result
