"""Built-in categories and categorization rules.

Built-ins are always present in a RuleEngine. Users may override a
built-in by upserting an entry with the same id, but cannot delete it.
Each call returns fresh objects, so engines never share mutable state.
"""

from datetime import datetime

from timetrack.core.models import (
    UNCATEGORIZED_ID,
    Category,
    MatchType,
    Rule,
    RuleType,
)

_BUILTIN_CREATED_AT = datetime(2024, 1, 1)

# (id, name, color, icon, is_productivity, productivity_score, order)
_CATEGORIES = [
    ("development", "Development", "#3B82F6", "code", True, 100, 1),
    ("communication", "Communication", "#8B5CF6", "message-circle", True, 70, 2),
    ("design", "Design", "#EC4899", "palette", True, 100, 3),
    ("meetings", "Meetings", "#F59E0B", "users", True, 60, 4),
    ("documentation", "Documentation", "#10B981", "file-text", True, 90, 5),
    ("research", "Research", "#06B6D4", "search", True, 80, 6),
    ("entertainment", "Entertainment", "#EF4444", "play-circle", False, 10, 7),
    ("social-media", "Social Media", "#F97316", "share-2", False, 15, 8),
    ("utilities", "Utilities", "#6B7280", "settings", True, 50, 9),
    (UNCATEGORIZED_ID, "Uncategorized", "#9CA3AF", "help-circle", True, 50, 100),
]

# (id, category_id, type, pattern, priority); match type is "contains"
# unless listed in _EXACT_RULES.
_RULES = [
    # Development
    ("dev-vscode", "development", "app", "Visual Studio Code", 100),
    ("dev-vscode2", "development", "app", "Code", 90),
    ("dev-intellij", "development", "app", "IntelliJ", 100),
    ("dev-webstorm", "development", "app", "WebStorm", 100),
    ("dev-pycharm", "development", "app", "PyCharm", 100),
    ("dev-sublime", "development", "app", "Sublime Text", 100),
    ("dev-atom", "development", "app", "Atom", 90),
    ("dev-xcode", "development", "app", "Xcode", 100),
    ("dev-android", "development", "app", "Android Studio", 100),
    ("dev-terminal", "development", "app", "Terminal", 80),
    ("dev-iterm", "development", "app", "iTerm", 80),
    ("dev-cmd", "development", "app", "cmd.exe", 80),
    ("dev-powershell", "development", "app", "PowerShell", 80),
    ("dev-github-title", "development", "title", "GitHub", 70),
    ("dev-gitlab-title", "development", "title", "GitLab", 70),
    ("dev-bitbucket-title", "development", "title", "Bitbucket", 70),
    ("dev-stackoverflow", "development", "title", "Stack Overflow", 70),
    ("dev-vim", "development", "app", "vim", 80),
    ("dev-neovim", "development", "app", "nvim", 80),
    ("dev-cursor", "development", "app", "Cursor", 100),
    # Communication
    ("comm-slack", "communication", "app", "Slack", 100),
    ("comm-teams", "communication", "app", "Microsoft Teams", 100),
    ("comm-discord", "communication", "app", "Discord", 100),
    ("comm-outlook", "communication", "app", "Outlook", 90),
    ("comm-gmail", "communication", "title", "Gmail", 90),
    ("comm-mail", "communication", "app", "Mail", 80),
    ("comm-telegram", "communication", "app", "Telegram", 90),
    ("comm-whatsapp", "communication", "app", "WhatsApp", 90),
    # Design
    ("design-figma", "design", "app", "Figma", 100),
    ("design-figma-title", "design", "title", "Figma", 90),
    ("design-sketch", "design", "app", "Sketch", 100),
    ("design-photoshop", "design", "app", "Photoshop", 100),
    ("design-illustrator", "design", "app", "Illustrator", 100),
    ("design-xd", "design", "app", "Adobe XD", 100),
    ("design-canva", "design", "title", "Canva", 90),
    ("design-invision", "design", "app", "InVision", 100),
    ("design-affinity", "design", "app", "Affinity", 100),
    # Meetings
    ("meet-zoom", "meetings", "app", "zoom", 100),
    ("meet-meet", "meetings", "title", "Google Meet", 100),
    ("meet-webex", "meetings", "app", "Webex", 100),
    ("meet-skype", "meetings", "app", "Skype", 100),
    ("meet-facetime", "meetings", "app", "FaceTime", 100),
    ("meet-around", "meetings", "app", "Around", 100),
    ("meet-loom", "meetings", "app", "Loom", 90),
    # Documentation
    ("doc-notion", "documentation", "app", "Notion", 100),
    ("doc-notion-title", "documentation", "title", "Notion", 90),
    ("doc-confluence", "documentation", "title", "Confluence", 100),
    ("doc-gdocs", "documentation", "title", "Google Docs", 100),
    ("doc-word", "documentation", "app", "Microsoft Word", 100),
    ("doc-obsidian", "documentation", "app", "Obsidian", 100),
    ("doc-evernote", "documentation", "app", "Evernote", 100),
    ("doc-bear", "documentation", "app", "Bear", 90),
    ("doc-coda", "documentation", "title", "Coda", 80),
    # Research (browsers rank low so title rules win)
    ("research-chrome", "research", "app", "Google Chrome", 30),
    ("research-firefox", "research", "app", "Firefox", 30),
    ("research-safari", "research", "app", "Safari", 30),
    ("research-edge", "research", "app", "Microsoft Edge", 30),
    ("research-brave", "research", "app", "Brave", 30),
    # Entertainment
    ("ent-youtube", "entertainment", "title", "YouTube", 80),
    ("ent-netflix", "entertainment", "title", "Netflix", 100),
    ("ent-spotify", "entertainment", "app", "Spotify", 100),
    ("ent-twitch", "entertainment", "title", "Twitch", 100),
    ("ent-prime", "entertainment", "title", "Prime Video", 100),
    ("ent-disney", "entertainment", "title", "Disney+", 100),
    ("ent-hulu", "entertainment", "title", "Hulu", 100),
    ("ent-apple-music", "entertainment", "app", "Music", 70),
    # Social media
    ("social-twitter", "social-media", "title", "Twitter", 100),
    ("social-x", "social-media", "title", "/ X", 90),
    ("social-facebook", "social-media", "title", "Facebook", 100),
    ("social-instagram", "social-media", "title", "Instagram", 100),
    ("social-linkedin", "social-media", "title", "LinkedIn", 100),
    ("social-reddit", "social-media", "title", "Reddit", 100),
    ("social-tiktok", "social-media", "title", "TikTok", 100),
    # Utilities
    ("util-finder", "utilities", "app", "Finder", 80),
    ("util-explorer", "utilities", "app", "Explorer", 80),
    ("util-settings", "utilities", "app", "Settings", 80),
    ("util-preferences", "utilities", "app", "Preferences", 80),
    ("util-1password", "utilities", "app", "1Password", 90),
    ("util-lastpass", "utilities", "app", "LastPass", 90),
]

_EXACT_RULES = {"util-finder"}


def default_categories() -> list[Category]:
    """Return the built-in categories, ordered by display order."""
    return [
        Category(
            id=cid,
            name=name,
            color=color,
            icon=icon,
            is_productivity=productive,
            productivity_score=score,
            is_default=True,
            order=order,
        )
        for cid, name, color, icon, productive, score, order in _CATEGORIES
    ]


def default_rules() -> list[Rule]:
    """Return the built-in rules in declaration order."""
    rules = []
    for rule_id, category_id, kind, pattern, priority in _RULES:
        rule_type = RuleType(kind)
        rules.append(
            Rule(
                id=rule_id,
                category_id=category_id,
                type=rule_type,
                match_type=MatchType.EXACT if rule_id in _EXACT_RULES else MatchType.CONTAINS,
                app_pattern=pattern if rule_type is RuleType.APP else None,
                title_pattern=pattern if rule_type is RuleType.TITLE else None,
                priority=priority,
                is_enabled=True,
                is_default=True,
                created_at=_BUILTIN_CREATED_AT,
            )
        )
    return rules
