"""
Message templates for guard and escalation notifications.

Email gets HTML; WhatsApp and Slack get short plain text with *bold*
markers. WhatsApp bodies are capped at 1600 characters.
"""

from __future__ import annotations

import html
from dataclasses import dataclass, field
from typing import Any

from notifications.channels import WHATSAPP_MAX_CHARS, ChannelType
from prediction.schemas import RiskSnapshot

RISK_COLORS = {"critical": "#dc2626", "high": "#f59e0b", "medium": "#eab308"}


@dataclass
class RenderedMessage:
    subject: str
    body: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class GuardContext:
    """Retry policy numbers shown to the guard."""

    attempt: int
    max_attempts: int
    retry_minutes: int
    backend_url: str


def _snapshot(record) -> RiskSnapshot:
    return RiskSnapshot.model_validate(record.risk_metadata or {})


def _pct(value: float, digits: int = 1) -> str:
    return f"{value * 100:.{digits}f}%"


def _facts(record) -> dict[str, Any]:
    return {
        "Type": record.entity_type,
        "Risk level": str(record.risk_level).upper(),
        "Failure probability": _pct(record.probability),
    }


# ── Guard ──────────────────────────────────────────────────────────────────


def guard_subject(record, attempt: int) -> str:
    level = str(record.risk_level).upper()
    if attempt > 1:
        return f"🚨 [REMINDER {attempt}] Risk {level}: {record.entity_name}"
    return f"🚨 [GUARD] Risk {level}: {record.entity_name}"


def _guard_text(record, user, ctx: GuardContext) -> str:
    snapshot = _snapshot(record)
    lines = [
        "🚨 *RISK ALERT - Action required*",
        "",
        f"Hi *{user.name}*,",
        "A risk has been detected that requires your attention as the on-call guard:",
        "",
        f"*{str(record.risk_level).upper()}* {record.entity_name}",
        f"*Type:* {record.entity_type}",
        f"*Failure probability:* {_pct(record.probability)}",
        f"*Attempt:* {ctx.attempt} of {ctx.max_attempts}",
    ]
    if snapshot.baseline_comparison:
        bc = snapshot.baseline_comparison
        lines += [
            "",
            "📊 *Baseline comparison:*",
            f"• Current error rate: {_pct(bc.current_error_rate, 2)}",
            f"• Baseline error rate: {_pct(bc.baseline_error_rate, 2)}",
            f"• Deviation: {bc.deviation_percentage:.1f}%",
        ]
    if snapshot.trend:
        lines += ["", "📈 *Trend:*", f"• Direction: *{snapshot.trend.direction}*"]
    if snapshot.recommended_actions:
        lines += ["", "💡 *Recommended actions:*", *[f"• {a}" for a in snapshot.recommended_actions]]
    lines += [
        "",
        f"⏰ If you don't respond within {ctx.retry_minutes} minutes, another reminder will be sent. "
        f"After {ctx.max_attempts} attempts, it will be escalated automatically.",
    ]
    return "\n".join(lines)


def _guard_html(record, user, ctx: GuardContext) -> str:
    snapshot = _snapshot(record)
    color = RISK_COLORS.get(str(record.risk_level), "#64748b")
    sections = []
    if snapshot.baseline_comparison:
        bc = snapshot.baseline_comparison
        sections.append(
            "<h4>📊 Baseline comparison</h4><ul>"
            f"<li>Current error rate: {_pct(bc.current_error_rate, 2)}</li>"
            f"<li>Baseline error rate: {_pct(bc.baseline_error_rate, 2)}</li>"
            f"<li>Deviation: {bc.deviation_percentage:.1f}%</li></ul>"
        )
    if snapshot.trend:
        sections.append(f"<h4>📈 Trend</h4><p>Direction: <strong>{snapshot.trend.direction}</strong></p>")
    if snapshot.recommended_actions:
        items = "".join(f"<li>{html.escape(a)}</li>" for a in snapshot.recommended_actions)
        sections.append(f"<h4>💡 Recommended actions</h4><ul>{items}</ul>")

    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; color: #333;">
      <div style="background: {color}; color: white; padding: 20px; border-radius: 5px 5px 0 0;">
        <h2 style="margin: 0;">🚨 RISK ALERT - Action Required</h2>
      </div>
      <div style="background: #f9f9f9; padding: 20px; border: 1px solid #ddd;">
        <p>Hello <strong>{html.escape(user.name)}</strong>,</p>
        <p>A risk has been detected that requires your attention as the on-call guard:</p>
        <h3>{str(record.risk_level).upper()} {html.escape(record.entity_name)}</h3>
        <p><strong>Type:</strong> {record.entity_type}</p>
        <p><strong>Failure probability:</strong> {_pct(record.probability)}</p>
        <p><strong>Attempt:</strong> {ctx.attempt} of {ctx.max_attempts}</p>
        {"".join(sections)}
        <p>⚡ Open <a href="{ctx.backend_url}">RouteGuard</a> to dismiss or escalate this risk.</p>
        <p style="color: #dc2626; font-weight: bold;">
          ⏰ If you don't respond within {ctx.retry_minutes} minutes, another reminder will be sent.
          After {ctx.max_attempts} attempts, it will be escalated to the entire team.
        </p>
      </div>
    </div>
    """


def render_guard(channel: ChannelType, record, user, ctx: GuardContext) -> RenderedMessage:
    subject = guard_subject(record, ctx.attempt)
    if channel == ChannelType.GMAIL:
        return RenderedMessage(subject=subject, body=_guard_html(record, user, ctx))
    body = _guard_text(record, user, ctx)
    if channel == ChannelType.WHATSAPP:
        body = body[:WHATSAPP_MAX_CHARS]
    return RenderedMessage(subject=subject, body=body, metadata=_facts(record))


# ── Escalation ─────────────────────────────────────────────────────────────


def escalated_subject(record) -> str:
    return f"🚨 [CRITICAL] Risk escalated: {record.entity_name}"


def _escalated_text(record) -> str:
    snapshot = _snapshot(record)
    lines = [
        "🚨 *CRITICAL ALERT ESCALATED*",
        "",
        "⚠️ *IMMEDIATE ATTENTION REQUIRED*",
        f"Escalated after {record.guard_attempts} unanswered on-call guard attempts.",
        "",
        f"*Entity at risk:* {record.entity_name}",
        f"*Type:* {record.entity_type}",
        f"*Risk level:* {str(record.risk_level).upper()}",
        f"*Failure probability:* {_pct(record.probability)}",
    ]
    if snapshot.recommended_actions:
        lines += ["", "💡 *Recommended actions:*", *[f"• {a}" for a in snapshot.recommended_actions]]
    lines += ["", "⚡ Open RouteGuard to decide what to do."]
    return "\n".join(lines)


def _escalated_html(record) -> str:
    snapshot = _snapshot(record)
    actions = ""
    if snapshot.recommended_actions:
        items = "".join(f"<li>{html.escape(a)}</li>" for a in snapshot.recommended_actions)
        actions = f"<h4>💡 Recommended actions</h4><ul>{items}</ul>"

    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; color: #333;">
      <div style="background: #d32f2f; color: white; padding: 20px; border-radius: 5px 5px 0 0;">
        <h2 style="margin: 0;">🚨 CRITICAL ALERT ESCALATED</h2>
      </div>
      <div style="background: #fff3e0; padding: 20px; border: 2px solid #d32f2f;">
        <div style="background: #ffebee; border-left: 4px solid #f44336; padding: 15px; margin: 15px 0;">
          <h3>⚠️ IMMEDIATE ATTENTION REQUIRED</h3>
          <p>Escalated after {record.guard_attempts} unanswered on-call guard attempts.</p>
        </div>
        <h3>Entity at risk: {html.escape(record.entity_name)}</h3>
        <p><strong>Type:</strong> {record.entity_type}</p>
        <p><strong>Risk level:</strong> {str(record.risk_level).upper()}</p>
        <p><strong>Failure probability:</strong> {_pct(record.probability)}</p>
        {actions}
      </div>
    </div>
    """


def render_escalation(channel: ChannelType, record) -> RenderedMessage:
    subject = escalated_subject(record)
    if channel == ChannelType.GMAIL:
        return RenderedMessage(subject=subject, body=_escalated_html(record))
    body = _escalated_text(record)
    if channel == ChannelType.WHATSAPP:
        body = body[:WHATSAPP_MAX_CHARS]
    return RenderedMessage(subject=subject, body=body, metadata=_facts(record))


# ── Alert copy ─────────────────────────────────────────────────────────────


def reminder_explanation(attempt: int, max_attempts: int) -> str:
    return (
        f"This is attempt {attempt} of {max_attempts}.\n\n"
        "If no response is received, the risk will be escalated to the entire team."
    )


def escalation_explanation(guard_attempts: int) -> str:
    return (
        f"This alert was escalated after {guard_attempts} unanswered on-call guard attempts.\n\n"
        "Immediate attention from the entire team is required."
    )
