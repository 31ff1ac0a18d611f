import logging
from urllib.parse import quote

from fasthtml.common import *

from db import StoreError, StoreUnavailable, Word

logger = logging.getLogger(__name__)


def word_count_label(count: int) -> str:
    return f"{count} word{'s' if count != 1 else ''} saved"


def mk_lexical(headword: str, lexical, saved_button=None):
    """Render the lexical data of a word: definitions, pinyin, examples."""
    return Div(
        H4(
            Span(headword, style="margin-right: 10px;"),
            Span(lexical.ipa, style="color: var(--pico-muted-color); font-weight: normal;") if lexical.ipa else None,
            style="margin-bottom: 10px;"
        ),
        Div(*[Small(p, cls="pos-badge", style="margin-right: 6px;") for p in lexical.pos]) if lexical.pos else None,
        Ul(
            *[Li(d, Span(f" [{py}]", style="color: var(--pico-muted-color);") if py else None)
              for d, py in zip(lexical.definitions, lexical.pinyin + [''] * len(lexical.definitions))],
            style="margin: 0; padding-left: 20px;"
        ),
        Div(
            *[P(ex['en'], Br(), Small(ex['zh']), style="margin: 5px 0;") for ex in lexical.examples],
            cls="examples"
        ) if lexical.examples else None,
        P(
            "Word family: ",
            *[Span(f"{form}: {value} ", cls="word-family") for form, value in lexical.word_family.items()]
        ) if lexical.word_family else None,
        saved_button,
        cls="vocab-result"
    )


def mk_deck_header(count: int):
    return Div(
        Span(word_count_label(count), cls="word-count"),
        A("Start Review", href="/review", cls="review-button", role="button"),
        cls="saved-words-header",
        id="saved-words-header",
        hx_swap_oob="true"
    )


def mk_deck_row(word: Word):
    first = word.lexical_data.definitions[0] if word.lexical_data.definitions else ''
    return Card(
        Div(
            A(word.headword, href=f"/word/{quote(word.headword)}", cls="saved-word-text"),
            Small("learned", cls="learned-badge") if word.schedule.is_learned else None,
            P(first, cls="saved-word-definition"),
            cls="saved-word-row"
        ),
        Div(
            Button("↓ Later", hx_post=f"/deck/{word.id}/move-to-end", hx_target="#saved-words-list",
                   hx_swap="outerHTML", cls="compact secondary"),
            Button("✓ Learned", hx_post=f"/deck/{word.id}/learned", hx_target=f"#saved-word-{word.id}",
                   hx_swap="outerHTML", cls="compact", disabled=word.schedule.is_learned),
            Button("✕", hx_post=f"/deck/{word.id}/delete", hx_target=f"#saved-word-{word.id}",
                   hx_swap="outerHTML", cls="compact contrast"),
            cls="saved-word-actions"
        ),
        cls="saved-word-card",
        id=f"saved-word-{word.id}"
    )


def mk_deck_list(words):
    return Div(*[mk_deck_row(w) for w in words], id="saved-words-list")


def mk_error(message: str):
    return P(message, cls="error", style="color: var(--pico-del-color);")


def setup_routes(app, store):
    rt = app.route

    @rt('/deck')
    async def get():
        try:
            words = await store.list_words(newest_first=True)
        except StoreUnavailable:
            return Title("My Deck"), Container(mk_error("Failed to load vocabulary. Please try again."))
        return Title("My Deck"), Container(
            Link(href="/static/styles.css", rel="stylesheet"),
            H2("My Deck"),
            Div(
                A("← Back to Lookup", href="/", cls="back-link"),
                mk_deck_header(len(words)),
                style="display: flex; justify-content: space-between; align-items: center; margin-bottom: 20px;"
            ),
            mk_deck_list(words)
        )

    @rt('/word/{headword:path}')
    async def get(headword: str):
        try:
            word = await store.find_by_headword(headword.strip().lower())
        except StoreUnavailable:
            return Container(mk_error("Failed to load word. Please try again."))
        if word is None:
            return Container(
                mk_error("This word is not in your deck."),
                A("← Back to Deck", href="/deck", cls="back-link")
            )
        return Title(word.headword), Container(
            A("← Back to Deck", href="/deck", cls="back-link"),
            mk_lexical(word.headword, word.lexical_data)
        )

    @rt('/deck/{word_id}/delete')
    async def post(word_id: str):
        try:
            await store.delete(word_id)
            words = await store.list_words()
        except StoreUnavailable:
            return mk_error("Failed to delete word.")
        # Empty string removes the row; the header is swapped out of band
        return "", mk_deck_header(len(words))

    @rt('/deck/{word_id}/move-to-end')
    async def post(word_id: str):
        try:
            await store.move_to_end(word_id)
            words = await store.list_words()
        except StoreError as e:
            logger.warning("Move to end failed for %s: %s", word_id, e)
            return mk_error("Failed to move word.")
        return mk_deck_list(words)

    @rt('/deck/{word_id}/learned')
    async def post(word_id: str):
        try:
            await store.set_learned(word_id, True)
            word = await store.get(word_id)
        except StoreError as e:
            logger.warning("Marking %s learned failed: %s", word_id, e)
            return mk_error("Failed to update word.")
        return mk_deck_row(word)
