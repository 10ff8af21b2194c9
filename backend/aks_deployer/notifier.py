"""
Email notification sent when a pipeline run finishes.
"""
import logging
import smtplib
from email.message import EmailMessage
from typing import List, Optional

logger = logging.getLogger(__name__)

SUBJECT_TEMPLATE = "[{app}] Pipeline {status}: run {run_id}"

BODY_TEMPLATE = """Pipeline run {run_id} for {app} finished with status {status}.

Trigger: {trigger}
Branch:  {branch}
Commit:  {commit}
Image:   {image}

Stages:
{stages}
"""


def render_subject(run) -> str:
    return SUBJECT_TEMPLATE.format(app=run.app, status=run.status.value.upper(), run_id=run.run_id)


def render_body(run) -> str:
    lines = []
    for result in run.stages:
        line = f"  {result.stage.value:<7} {result.status.value}"
        if result.error:
            line += f"  ({result.error})"
        elif result.detail:
            line += f"  {result.detail}"
        lines.append(line)
    return BODY_TEMPLATE.format(
        run_id=run.run_id,
        app=run.app,
        status=run.status.value.upper(),
        trigger=run.trigger,
        branch=run.branch,
        commit=run.commit or "-",
        image=run.image.ref if run.image else "-",
        stages="\n".join(lines),
    )


class EmailNotifier:
    """Sends the run summary to a fixed recipient list over SMTP."""

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        recipients: List[str],
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: int = 30,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.recipients = recipients
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def build_message(self, run) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = render_subject(run)
        message["From"] = self.sender
        message["To"] = ", ".join(self.recipients)
        message.set_content(render_body(run))
        return message

    def notify(self, run) -> None:
        message = self.build_message(run)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            smtp.send_message(message)
        logger.info(f"📧 Sent '{message['Subject']}' to {len(self.recipients)} recipient(s)")


class NullNotifier:
    """Logs the outcome instead of sending mail."""

    def notify(self, run) -> None:
        logger.info(f"Notification skipped: {render_subject(run)}")


def build_notifier(settings):
    recipients = settings.notify_recipients
    if not settings.NOTIFY_ENABLED or not recipients:
        return NullNotifier()
    return EmailNotifier(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        sender=settings.NOTIFY_FROM,
        recipients=recipients,
        username=settings.SMTP_USERNAME,
        password=settings.SMTP_PASSWORD,
        use_tls=settings.SMTP_USE_TLS,
    )
