# -*- coding: utf-8 -*-
"""Tests for the built-in commands."""

# Standard
import random

# Third-Party
import pytest

# First-Party
from chatwarden.commands import builtin_commands, MANAGEMENT_COMMANDS
from chatwarden.commands.custom import handle_cmd
from chatwarden.commands.emoji import handle_emoji, handle_emoji_admin
from chatwarden.commands.help import handle_help
from chatwarden.commands.permissions import describe, handle_perm, parse_targets
from chatwarden.commands.python import handle_py, strip_code_fence
from chatwarden.commands.roll import DiceExpression, handle_roll, parse_dice, roll_dice
from chatwarden.errors import AuthorizationDenied, CommandUsageError, ScriptRuntimeError, ScriptTimeout
from chatwarden.models import Actor, CommandKind, Invocation, PolicyChange, RuleSet, ScriptErrorKind, ScriptResult
from chatwarden.services.command_registry import CommandContext

TENANT = "100"


@pytest.fixture
def run(services):
    """Execute a handler with the given argument text."""

    async def _run(handler, raw_args="", name="x", user="1", groups=()):
        context = CommandContext(invocation=Invocation(name, raw_args), tenant_id=TENANT, channel_id="200", actor=Actor.of(user, groups), services=services)
        return await handler(context)

    return _run


def test_builtin_set():
    names = [spec.name for spec in builtin_commands()]
    assert names == ["help", "roll", "py", "cmd", "perm", "emoji", "emoji-admin"]
    assert set(MANAGEMENT_COMMANDS) <= set(names)
    assert [spec.name for spec in builtin_commands() if spec.default_allow] == ["help"]


# ---------------------------------------------------------------------------
# roll
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "notation,expected",
    [
        ("d20", DiceExpression(1, 20, 0)),
        ("3d8-1", DiceExpression(3, 8, -1)),
        ("2D6 + 4", DiceExpression(2, 6, 4)),
    ],
)
def test_parse_dice(notation, expected):
    assert parse_dice(notation) == expected


@pytest.mark.parametrize("notation", ["0d6", "101d6", "d1", "d1001", "d6+10001"])
def test_parse_dice_limits(notation):
    with pytest.raises(CommandUsageError):
        parse_dice(notation)


def test_roll_dice_is_reproducible_with_seeded_rng():
    expression = DiceExpression(4, 6, 2)
    first = roll_dice(expression, random.Random(7))
    second = roll_dice(expression, random.Random(7))
    assert first == second
    assert first.total == sum(first.rolls) + 2
    assert all(1 <= r <= 6 for r in first.rolls)


def test_format_summary():
    result = roll_dice(DiceExpression(2, 6, -1), random.Random(1))
    rolls = ", ".join(str(r) for r in result.rolls)
    assert result.format_summary() == f"\U0001f3b2 2d6-1 → [{rolls}] - 1 = {result.total}"


@pytest.mark.asyncio
async def test_roll_defaults_to_d6(run):
    reply = await run(handle_roll)
    assert reply.startswith("\U0001f3b2 d6 → [")


@pytest.mark.asyncio
async def test_roll_rejects_garbage(run):
    with pytest.raises(CommandUsageError):
        await run(handle_roll, "banana")


# ---------------------------------------------------------------------------
# py
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "text,expected",
    [
        ("```python\nprint(1)\n```", "print(1)"),
        ("```\nx = 1\nx\n```", "x = 1\nx"),
        ("`2 ** 8`", "2 ** 8"),
        ("  1 + 1  ", "1 + 1"),
    ],
)
def test_strip_code_fence(text, expected):
    assert strip_code_fence(text) == expected


@pytest.mark.asyncio
async def test_py_runs_fenced_code(run, sandbox):
    sandbox.run_script.return_value = ScriptResult.success("256")
    assert await run(handle_py, "```py\n2 ** 8\n```") == "256"
    call = sandbox.run_script.await_args
    assert call.args == ("2 ** 8",)
    assert call.kwargs["tenant_id"] == TENANT
    assert call.kwargs["limits"].timeout_ms == 1000


@pytest.mark.asyncio
async def test_py_surfaces_script_errors(run, sandbox):
    sandbox.run_script.return_value = ScriptResult.failure(ScriptErrorKind.TIMEOUT, "Script timed out after 1000ms")
    with pytest.raises(ScriptTimeout):
        await run(handle_py, "while True: pass")


@pytest.mark.asyncio
async def test_py_without_code(run):
    with pytest.raises(CommandUsageError):
        await run(handle_py, "``````")


# ---------------------------------------------------------------------------
# cmd
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cmd_add_update_show_remove(run, registry):
    assert await run(handle_cmd, "add greet Hello {author}!") == "Added command `greet`"
    assert registry.custom_commands(TENANT)["greet"].body == "Hello {author}!"
    assert await run(handle_cmd, "add greet Hi") == "Updated command `greet`"
    assert await run(handle_cmd, "show greet") == "`greet` (text)\n```\nHi\n```"
    assert await run(handle_cmd, "list") == "`greet` (text)"
    assert await run(handle_cmd, "remove greet") == "Removed command `greet`"
    assert await run(handle_cmd, "list") == "This server has no custom commands"


@pytest.mark.asyncio
async def test_cmd_script_is_validated_and_stored(run, registry):
    assert await run(handle_cmd, "script dice ```py\nimport random\nrandom.randint(1, 6)\n```", user="7") == "Added command `dice`"
    definition = registry.custom_commands(TENANT)["dice"]
    assert definition.kind is CommandKind.SCRIPT
    assert definition.body == "import random\nrandom.randint(1, 6)"
    assert definition.created_by == "7"

    with pytest.raises(ScriptRuntimeError):
        await run(handle_cmd, "script evil import os")
    assert not registry.has_custom_command(TENANT, "evil")


@pytest.mark.asyncio
@pytest.mark.parametrize("args", ["", "add", "add greet", "remove", "remove missing", "show missing", "frobnicate x"])
async def test_cmd_usage_errors(run, args):
    with pytest.raises(CommandUsageError):
        await run(handle_cmd, args)


@pytest.mark.asyncio
async def test_cmd_cannot_shadow_builtin(run):
    with pytest.raises(CommandUsageError):
        await run(handle_cmd, "add roll nope")


# ---------------------------------------------------------------------------
# perm
# ---------------------------------------------------------------------------


def test_parse_targets():
    members = parse_targets(["<@!5>", "group:ops", "@everyone"], TENANT)
    assert members.users == frozenset({"5"})
    assert members.groups == frozenset({"ops", TENANT})
    with pytest.raises(CommandUsageError):
        parse_targets(["bob"], TENANT)


def test_describe():
    assert describe(RuleSet(), TENANT) == "nobody"
    assert describe(RuleSet(users=frozenset({"5"}), groups=frozenset({TENANT, "9"})), TENANT) == "<@5>, everyone, <@&9>"


@pytest.mark.asyncio
async def test_perm_allow_and_deny(run, policy):
    assert await run(handle_perm, "allow roll <@5> <@&9>") == "`roll` is allowed for: <@5>, <@&9>"
    assert policy.check(TENANT, "roll", Actor.of("5"))
    assert policy.check(TENANT, "roll", Actor.of("6", ["9"]))

    assert await run(handle_perm, "deny roll <@5>") == "`roll` is allowed for: <@&9>"
    assert not policy.check(TENANT, "roll", Actor.of("5"))


@pytest.mark.asyncio
async def test_perm_reset_and_list(run, policy):
    await policy.change(TENANT, "py", PolicyChange.grant(users=["5"], groups=[TENANT]))
    assert await run(handle_perm, "list py") == "`py`: <@5>, everyone"
    assert await run(handle_perm, "reset py") == "`py` is allowed for: nobody"
    assert not policy.check(TENANT, "py", Actor.of("5", [TENANT]))
    assert await run(handle_perm, "list") == "`py`: nobody"


@pytest.mark.asyncio
async def test_perm_list_when_empty(run):
    assert await run(handle_perm, "list") == "No permissions configured"


@pytest.mark.asyncio
@pytest.mark.parametrize("args", ["", "allow", "allow roll", "allow nosuch <@5>", "reset", "explode roll"])
async def test_perm_usage_errors(run, args):
    with pytest.raises(CommandUsageError):
        await run(handle_perm, args)


@pytest.mark.asyncio
async def test_perm_rejects_custom_command(run, registry):
    await run(handle_cmd, "add greet hi")
    with pytest.raises(CommandUsageError):
        await run(handle_perm, "allow greet <@5>")


# ---------------------------------------------------------------------------
# help
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_help_lists_only_allowed_commands(run, policy):
    await policy.change(TENANT, "roll", PolicyChange.grant(users=["1"]))
    reply = await run(handle_help)
    assert "`!help` - Show available commands" in reply
    assert "`!roll [N]d<S>[+|-M]` - Roll dice" in reply
    assert "!perm" not in reply
    assert "Custom commands" not in reply


@pytest.mark.asyncio
async def test_help_lists_custom_commands(run):
    await run(handle_cmd, "add wave o/")
    await run(handle_cmd, "add greet hi")
    reply = await run(handle_help)
    assert reply.endswith("**Custom commands**\n`!greet`, `!wave`")


# ---------------------------------------------------------------------------
# emoji
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_emoji_top(run, emoji_collector):
    assert await run(handle_emoji) == "No emoji usage recorded yet"
    emoji_collector.observe(TENANT, "<:pog:1> <:pog:1> <a:dance:2>")
    assert await run(handle_emoji) == "1. <:pog:1> x2\n2. <a:dance:2> x1"
    assert await run(handle_emoji, "top 1") == "1. <:pog:1> x2"


@pytest.mark.asyncio
async def test_emoji_toggle_and_reset(run, emoji_collector, policy):
    await policy.change(TENANT, "emoji-admin", PolicyChange.grant(users=["1"]))
    assert await run(handle_emoji, "disable") == "Emoji statistics disabled"
    assert not emoji_collector.is_enabled(TENANT)
    assert await run(handle_emoji, "enable") == "Emoji statistics enabled"
    emoji_collector.observe(TENANT, "<:pog:1>")
    assert await run(handle_emoji, "reset") == "Emoji statistics reset"
    assert emoji_collector.top(TENANT) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("args", ["top x", "top 0", "explode"])
async def test_emoji_usage_errors(run, args):
    with pytest.raises(CommandUsageError):
        await run(handle_emoji, args)


@pytest.mark.asyncio
@pytest.mark.parametrize("action", ["enable", "disable", "reset"])
async def test_emoji_management_requires_admin_grant(run, emoji_collector, policy, action):
    await policy.change(TENANT, "emoji", PolicyChange.grant(groups=[TENANT]))
    emoji_collector.observe(TENANT, "<:pog:1>")
    with pytest.raises(AuthorizationDenied):
        await run(handle_emoji, action, groups=[TENANT])
    assert emoji_collector.top(TENANT)[0].count == 1
    assert emoji_collector.is_enabled(TENANT)


@pytest.mark.asyncio
async def test_emoji_admin_command(run, emoji_collector):
    emoji_collector.observe(TENANT, "<:pog:1>")
    assert await run(handle_emoji_admin, "disable") == "Emoji statistics disabled"
    assert not emoji_collector.is_enabled(TENANT)
    assert await run(handle_emoji_admin, "reset") == "Emoji statistics reset"
    assert emoji_collector.top(TENANT) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("args", ["", "top", "explode"])
async def test_emoji_admin_usage_errors(run, args):
    with pytest.raises(CommandUsageError):
        await run(handle_emoji_admin, args)
