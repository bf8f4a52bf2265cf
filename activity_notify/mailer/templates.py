"""Template rendering for notification email using Jinja2.

This module wraps Jinja2 template rendering with strict undefined checking
to catch template errors early.
"""

import logging
from typing import Dict

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError

from activity_notify.exceptions import NotificationTemplateError

logger = logging.getLogger(__name__)


class TemplateRenderer:
    """Renders email templates using Jinja2.

    Renders the subject line and the HTML and plain text bodies from template
    files in the activity_notify.mailer templates directory. Jinja2 caches
    loaded templates across invocations.
    """

    def __init__(
        self,
        template_dir: str = "templates",
        subject_template: str = "notification_subject.j2",
        html_template: str = "notification_body.html.j2",
        text_template: str = "notification_body.txt.j2",
    ):
        """Initialize template renderer with Jinja2 environment.

        Args:
            template_dir: Directory name within the activity_notify.mailer package
            subject_template: Filename of subject line template
            html_template: Filename of HTML body template
            text_template: Filename of plain text body template
        """
        self.subject_template_name = subject_template
        self.html_template_name = html_template
        self.text_template_name = text_template

        self.env = Environment(
            loader=PackageLoader("activity_notify.mailer", template_dir),
            autoescape=True,
            undefined=StrictUndefined,
        )

        logger.debug(f"Initialized TemplateRenderer with templates from {template_dir}")

    @classmethod
    def for_batch(cls) -> "TemplateRenderer":
        return cls(
            subject_template="batch_subject.j2",
            html_template="batch_body.html.j2",
            text_template="batch_body.txt.j2",
        )

    def render(self, context: Dict) -> Dict[str, str]:
        """Render all email templates with the provided context.

        Args:
            context: Dictionary of template variables

        Returns:
            Dictionary containing:
            - subject: Rendered subject line (single line, no newlines)
            - html_body: Rendered HTML body
            - text_body: Rendered plain text body

        Raises:
            NotificationTemplateError: If template rendering fails
        """
        try:
            subject_template = self.env.get_template(self.subject_template_name)
            html_template = self.env.get_template(self.html_template_name)
            text_template = self.env.get_template(self.text_template_name)

            subject = subject_template.render(context).strip().replace("\n", " ")
            html_body = html_template.render(context)
            text_body = text_template.render(context)

            return {
                "subject": subject,
                "html_body": html_body,
                "text_body": text_body,
            }

        except TemplateError as e:
            error_msg = f"Template rendering failed: {e}"
            logger.error(error_msg, exc_info=True)
            raise NotificationTemplateError(error_msg) from e
