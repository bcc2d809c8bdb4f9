"""
Coffee chat message copy

Plain-text bodies for every announcement and direct message the service
sends. The platform integration layer renders mentions from the <@id> and
<#id> markers.
"""

from typing import Any

from ..config import MIN_SIGNUPS_FOR_MATCHING, PENALTY_WEEKS
from .windows import SignupWindow, format_hour

PAIRINGS_PER_MESSAGE = 5
FOOTER = "Let's build connections, one coffee chat at a time! ☕"


# =============================================================================
# HELPERS
# =============================================================================

def mention(user_id: str) -> str:
    return f"<@{user_id}>"


def pairing_members(pairing: dict[str, Any]) -> list[str]:
    members = [pairing["user_a"], pairing["user_b"]]
    if pairing.get("user_c"):
        members.append(pairing["user_c"])
    return members


def slot_display(pairing: dict[str, Any]) -> str:
    if pairing.get("assigned_slot_ref"):
        return f"<#{pairing['assigned_slot_ref']}>"
    return f"**{pairing['assigned_slot_label']}**"


def partners_of(pairing: dict[str, Any], user_id: str) -> str:
    return " and ".join(mention(m) for m in pairing_members(pairing) if m != user_id)


# =============================================================================
# CHANNEL ANNOUNCEMENTS
# =============================================================================

def signup_announcement(settings: dict[str, Any], window: SignupWindow) -> str:
    ping = f"<@&{settings['ping_role_id']}>\n" if settings.get("ping_role_id") else ""
    return (
        f"{ping}☕ **Coffee Chat Signups Open!**\n\n"
        "Time for this week's coffee chats! Sign up now to be matched with a fellow community member.\n\n"
        "**How it works:**\n"
        "• Sign up with your timezone: AMERICAS, EMEA, or APAC\n"
        f"• Signups close today at **{format_hour(window.end_hour)} CT**\n"
        f"• Matches will be posted in <#{settings['pairings_channel_id']}>\n\n"
        "**Remember:**\n"
        "• If you sign up, please show up!\n"
        f"• No-shows can be reported and result in a {PENALTY_WEEKS}-week ban\n"
        "• You can withdraw before signups close\n\n"
        f"{FOOTER}"
    )


def pairings_header(count: int) -> str:
    word = "pairing" if count == 1 else "pairings"
    return (
        "☕ **Coffee Chat Matches - This Week**\n\n"
        f"**{count} {word}** created!\n\n"
        "Coordinate a time this week to meet in your assigned voice channel.\n"
        "If your partner doesn't show, file a no-show report."
    )


def pairing_line(pairing: dict[str, Any]) -> str:
    mentions = " + ".join(mention(m) for m in pairing_members(pairing))
    trio = " (Trio)" if pairing.get("user_c") else ""
    warning = " ⚠️" if pairing.get("needs_coordination") else ""
    return f"☕ {mentions}{trio} → {slot_display(pairing)}{warning}"


def pairing_messages(pairings: list[dict[str, Any]]) -> list[str]:
    messages = [pairings_header(len(pairings))]
    for start in range(0, len(pairings), PAIRINGS_PER_MESSAGE):
        batch = pairings[start:start + PAIRINGS_PER_MESSAGE]
        messages.append("\n".join(pairing_line(p) for p in batch))
    return messages


def not_enough_signups() -> str:
    return (
        "☕ **Coffee Chats This Week**\n\n"
        f"Not enough signups this week (need at least {MIN_SIGNUPS_FOR_MATCHING} people).\n\n"
        "Spread the word and let's get more sign-ups next week!"
    )


def manual_pairing_notice(pairing: dict[str, Any], created_by: str | None) -> str:
    trio = " (Trio)" if pairing.get("user_c") else ""
    by = f" by {mention(created_by)}" if created_by else ""
    mentions = " + ".join(mention(m) for m in pairing_members(pairing))
    return f"☕ **Manual pairing created**{by}{trio}\n\n👥 {mentions}\n🎤 {slot_display(pairing)}"


def report_filed_notice(report: dict[str, Any], moderator_role_id: str | None) -> str:
    ping = f"<@&{moderator_role_id}> " if moderator_role_id else ""
    return (
        f"{ping}🚩 **No-show report #{report['id']}**\n"
        f"{mention(report['reporter_id'])} reported {mention(report['reported_id'])} "
        f"for pairing #{report['pairing_id']}."
    )


# =============================================================================
# DIRECT MESSAGES
# =============================================================================

def pairing_dm(pairing: dict[str, Any], user_id: str) -> str:
    trio = " (trio)" if pairing.get("user_c") else ""
    text = (
        f"☕ **You've been paired for this week's coffee chat!**{trio}\n\n"
        f"👥 Your partner: {partners_of(pairing, user_id)}\n"
        f"🎤 Assigned VC: {slot_display(pairing)}\n\n"
        "Coordinate a time to meet this week. Your chat will be auto-logged if you use your assigned VC together, "
        "or you can mark it complete when you're done.\n\n"
        "Have a great conversation!"
    )
    if pairing.get("needs_coordination"):
        text += "\n\n⚠️ More pairings than voice channels this week, so your VC is shared. Coordinate timing with the other group."
    return text


def reminder_dm(pairing: dict[str, Any], user_id: str) -> str:
    return (
        f"☕ **Friendly reminder!** You haven't had your coffee chat with {partners_of(pairing, user_id)} yet this week.\n\n"
        f"Try to connect before the week ends! Hop into {slot_display(pairing)} or coordinate a time that works.\n\n"
        "Once you've met in your assigned VC, it'll be auto-logged, or you can mark it complete."
    )


def completion_confirmed_dm() -> str:
    return "☕ **Coffee chat logged!** Thanks for connecting with your partner. See you next week!"


def completion_by_partner_dm(completed_by: str) -> str:
    return f"☕ **Coffee chat logged!** {mention(completed_by)} confirmed that your coffee chat is complete. Great job connecting!"


def presence_completion_dm() -> str:
    return "☕ **Coffee chat logged!** Your chat in the assigned coffee VC was detected and recorded automatically."


def penalty_dm(expires_at_text: str) -> str:
    return (
        "🚫 A no-show report about you was upheld by a moderator.\n\n"
        f"You can't sign up for coffee chats until **{expires_at_text}**."
    )
