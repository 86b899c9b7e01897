"""HTML bodies and subjects for notification emails."""

from dataclasses import dataclass
from datetime import date
from html import escape

from core.config import get_settings


@dataclass
class RenderedEmail:
    subject: str
    html: str


def upload_url(upload_token: str | None) -> str | None:
    if not upload_token:
        return None
    return f"{get_settings().app_base_url.rstrip('/')}/upload/{upload_token}"


def _wrap(heading: str, body: str, cta_url: str | None = None, cta_text: str = "Upload Your Certificate") -> str:
    app_name = escape(get_settings().app_name)
    cta = ""
    if cta_url:
        cta = f"""
        <div style="text-align: center; margin: 24px 0;">
          <a href="{escape(cta_url)}"
             style="display: inline-block; background: #0d9488; color: white;
                    padding: 12px 32px; border-radius: 8px; text-decoration: none;
                    font-weight: 600; font-size: 14px;">
            {escape(cta_text)}
          </a>
        </div>"""
    return f"""
    <div style="font-family: Inter, Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <div style="background: #0f766e; color: white; padding: 24px; border-radius: 12px 12px 0 0;">
        <h1 style="margin: 0; font-size: 20px;">{app_name}</h1>
      </div>
      <div style="background: #ffffff; padding: 32px 24px; border: 1px solid #e5e7eb;">
        <h2 style="margin: 0 0 16px; font-size: 18px; color: #111827;">{escape(heading)}</h2>
        <div style="color: #374151; font-size: 14px; line-height: 1.6;">{body}</div>
        {cta}
      </div>
      <div style="text-align: center; padding: 16px; color: #9ca3af; font-size: 12px;">
        Powered by {app_name}
      </div>
    </div>
    """


def _gap_list(gaps: list[str]) -> str:
    if not gaps:
        return '<p style="color: #991b1b;">No specific gaps listed.</p>'
    items = "".join(f"<li>{escape(gap)}</li>" for gap in gaps)
    return f'<ul style="margin: 0; padding-left: 16px; color: #991b1b;">{items}</ul>'


def expiration_email(
    kind: str,
    *,
    entity_name: str,
    property_name: str,
    expiration: date,
    days_until: int,
    upload_token: str | None,
) -> RenderedEmail:
    name, prop = escape(entity_name), escape(property_name)
    if kind == "expired":
        heading = "Your COI has expired"
        body = (
            f"<p>The Certificate of Insurance for <strong>{name}</strong> at <strong>{prop}</strong> "
            f"expired on {expiration.isoformat()}.</p>"
            "<p>Please upload an updated certificate as soon as possible to maintain compliance.</p>"
        )
    else:
        heading = f"Your COI expires in {days_until} days"
        if kind == "expiring_7":
            heading = f"URGENT: {heading}"
        body = (
            f"<p>The Certificate of Insurance for <strong>{name}</strong> at <strong>{prop}</strong> "
            f"expires on {expiration.isoformat()}.</p>"
            "<p>Please upload a renewed certificate before it expires to maintain compliance.</p>"
        )
    return RenderedEmail(
        subject=f"{heading} — {property_name}",
        html=_wrap(heading, body, upload_url(upload_token)),
    )


def gap_email(*, entity_name: str, property_name: str, gaps: list[str], upload_token: str | None) -> RenderedEmail:
    heading = "Coverage gaps identified"
    body = (
        f"<p>We reviewed the certificate of insurance on file for <strong>{escape(entity_name)}</strong> "
        f"at <strong>{escape(property_name)}</strong> and found the following gaps:</p>"
        f"{_gap_list(gaps)}"
        "<p>Please have your insurance provider issue an updated certificate addressing these items.</p>"
    )
    return RenderedEmail(
        subject=f"Certificate of Insurance — Coverage Gaps Identified — {property_name}",
        html=_wrap(heading, body, upload_url(upload_token)),
    )


def follow_up_email(
    *,
    entity_name: str,
    property_name: str,
    follow_up_number: int,
    max_follow_ups: int,
    gaps: list[str],
    upload_token: str | None,
) -> RenderedEmail:
    heading = "Reminder: Updated COI needed"
    body = (
        f"<p>We still need an updated Certificate of Insurance for <strong>{escape(entity_name)}</strong> "
        f"at <strong>{escape(property_name)}</strong>.</p>"
        f"{_gap_list(gaps) if gaps else ''}"
        f'<p style="color: #6b7280; font-size: 12px;">This is follow-up #{follow_up_number} of {max_follow_ups}.</p>'
    )
    return RenderedEmail(
        subject=f"{heading} — {property_name}",
        html=_wrap(heading, body, upload_url(upload_token)),
    )


def manual_intervention_email(*, entity_name: str, property_name: str, max_follow_ups: int) -> RenderedEmail:
    heading = "Manual intervention needed"
    body = (
        f"<p><strong>{escape(entity_name)}</strong> has not responded after {max_follow_ups} follow-up emails "
        f"regarding their COI for <strong>{escape(property_name)}</strong>.</p>"
        "<p>Manual intervention may be required to resolve this compliance issue.</p>"
    )
    return RenderedEmail(
        subject=f"[Action Required] {entity_name} — COI follow-ups exhausted",
        html=_wrap(heading, body),
    )
