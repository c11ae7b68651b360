"""Declarative intent table: ``(pattern, category)`` pairs.

Every intent check in the package goes through ``core.intent.detect_intents``,
which compiles this table once. Add a row here rather than a new regex
elsewhere.

Categories:
    url       - message carries an http(s) link
    search    - explicit request for an external lookup
    recency   - asks for current / latest information (adds a date to queries)
    news      - news or trend flavoured request
    question  - generic question shape (weak lookup signal)
    help      - asks what the agent can do
"""

URL_PATTERN = r"https?://[^\s<>\"'）」]+"

INTENT_PATTERNS: list[tuple[str, str]] = [
    (URL_PATTERN, "url"),
    # explicit lookup
    (r"^\?\?\s*\S", "search"),
    (r"\b(?:search|look up|google)\b(?: for)?\s+\S", "search"),
    (r"\b(?:find|research) (?:out |me )?(?:about|info|information|sources)\b", "search"),
    (r"\bcheck (?:the )?(?:web|internet|online)\b", "search"),
    (r"検索", "search"),
    (r"調べて", "search"),
    (r"(?:web|ウェブ)で", "search"),
    (r"リサーチ", "search"),
    # recency
    (r"\b(?:today|tonight|latest|current(?:ly)?|right now|this (?:week|morning))\b", "recency"),
    (r"今日|本日|最新|速報", "recency"),
    # news
    (r"\b(?:news|headlines?|trending|breaking)\b", "news"),
    (r"ニュース|話題|注目|トレンド", "news"),
    # question shape
    (r"\b(?:what|who|when|where) (?:is|are|was|were)\b", "question"),
    (r"(?:とは|って何|ってなに|何ですか)", "question"),
    # capabilities
    (r"\bwhat can you do\b", "help"),
    (r"\b(?:your )?(?:features|capabilities)\b", "help"),
    (r"^\s*help\s*$", "help"),
    (r"どんなことができる|何ができる|できること|使い方|自己紹介", "help"),
]

# Categories that on their own justify an external search.
LOOKUP_CATEGORIES: frozenset[str] = frozenset({"search", "news"})
