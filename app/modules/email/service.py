import smtplib
import ssl
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.mime.application import MIMEApplication
from email.utils import formataddr, make_msgid
from dataclasses import dataclass
from typing import Optional, Dict, Any
from pathlib import Path
import logging
from jinja2 import Environment, FileSystemLoader, select_autoescape
from tenacity import Retrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from app.common.exceptions import ExternalServiceError
from app.core.config import settings

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"


@dataclass
class EmailMessage:
    to_address: str
    to_name: str
    subject: str
    html_body: str
    attachment: Optional[bytes] = None
    attachment_filename: Optional[str] = None


@dataclass
class EmailResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class EmailDeliveryError(ExternalServiceError):
    def __init__(self, message: str):
        super().__init__("email", message)


class EmailService:
    """
    Servicio de correo electrónico con soporte para templates Jinja2.

    ``send_email`` hace un único intento y nunca lanza: devuelve un
    ``EmailResult``. ``send_with_retry`` reintenta con backoff exponencial y
    lanza ``EmailDeliveryError`` si se agotan los intentos.
    """

    def __init__(self, max_attempts: Optional[int] = None, backoff_seconds: Optional[float] = None):
        self.smtp_server = settings.EMAIL_SMTP_SERVER
        self.smtp_port = settings.EMAIL_SMTP_PORT
        self.username = settings.EMAIL_USERNAME
        self.password = settings.EMAIL_PASSWORD
        self.use_tls = settings.EMAIL_USE_TLS
        self.from_email = settings.EMAIL_FROM
        self.from_name = settings.EMAIL_FROM_NAME
        self.max_attempts = max_attempts or settings.EMAIL_MAX_ATTEMPTS
        self.backoff_seconds = settings.EMAIL_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds

        self.jinja_env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=select_autoescape(['html', 'xml'])
        )

    def _create_smtp_connection(self):
        """Crear conexión SMTP segura."""
        try:
            if self.use_tls:
                context = ssl.create_default_context()
                server = smtplib.SMTP(self.smtp_server, self.smtp_port)
                server.starttls(context=context)
            else:
                server = smtplib.SMTP_SSL(self.smtp_server, self.smtp_port)

            if self.username:
                server.login(self.username, self.password)
            return server
        except Exception as e:
            logger.error(f"Error creating SMTP connection: {str(e)}")
            raise

    def render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        """
        Renderizar template de email con contexto.

        Args:
            template_name: Nombre del archivo de template
            context: Variables para el template

        Returns:
            HTML renderizado del template
        """
        try:
            template = self.jinja_env.get_template(template_name)
            return template.render(**context)
        except Exception as e:
            logger.error(f"Error rendering template {template_name}: {str(e)}")
            raise

    def build_mime(self, message: EmailMessage, message_id: str) -> MIMEMultipart:
        msg = MIMEMultipart('mixed')
        msg['Subject'] = message.subject
        msg['From'] = formataddr((self.from_name, self.from_email))
        msg['To'] = formataddr((message.to_name, message.to_address))
        msg['Message-ID'] = message_id

        msg.attach(MIMEText(message.html_body, 'html', 'utf-8'))

        if message.attachment is not None:
            part = MIMEApplication(message.attachment, Name=message.attachment_filename)
            part.add_header(
                'Content-Disposition',
                'attachment',
                filename=message.attachment_filename or "document.pdf"
            )
            msg.attach(part)
        return msg

    def send_email(self, message: EmailMessage) -> EmailResult:
        """Un intento de envío; los errores se devuelven en el resultado."""
        message_id = make_msgid(domain=self.from_email.split("@")[-1] if "@" in self.from_email else None)
        try:
            msg = self.build_mime(message, message_id)
            with self._create_smtp_connection() as server:
                server.sendmail(self.from_email, [message.to_address], msg.as_string())

            logger.info(f"Email sent successfully to {message.to_address} ({message_id})")
            return EmailResult(success=True, message_id=message_id)

        except Exception as e:
            logger.error(f"Error sending email to {message.to_address}: {str(e)}")
            return EmailResult(success=False, error=str(e))

    def send_with_retry(self, message: EmailMessage) -> EmailResult:
        """
        Envío con reintentos acotados (por defecto 3 intentos, esperas de 2s y 4s entre ellos).

        Solo devuelve cuando un intento fue confirmado; si todos fallan lanza
        ``EmailDeliveryError`` con el último error.
        """
        def _log_retry(retry_state):
            logger.warning(
                f"Email to {message.to_address} failed "
                f"(attempt {retry_state.attempt_number}/{self.max_attempts}), retrying"
            )

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, exp_base=2),
            retry=retry_if_exception_type(EmailDeliveryError),
            before_sleep=_log_retry,
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                result = self.send_email(message)
                if not result.success:
                    raise EmailDeliveryError(f"No se pudo enviar el correo: {result.error}")
        return result
