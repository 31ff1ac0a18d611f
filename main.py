import json
import logging
import sys
import uuid
from collections import OrderedDict

from fasthtml.common import *

import saved_words
from config import load_config
from db import StoreUnavailable, VocabularyStore, init_db
from dictionary import InvalidWord, LookupFailed, get_provider, normalize_headword
from saved_words import mk_error, mk_lexical
from services import ReviewSession, SessionQueue, SessionState, SessionStateError, get_policy

logger = logging.getLogger(__name__)

# Review sessions kept in memory at once; the least recently used is dropped first
MAX_REVIEW_SESSIONS = 256

RATING_LABELS = {
    'again': "Again",
    'done': "Done",
    'good': "Good",
    'easy': "Easy",
}


def mk_lookup_form():
    return Form(
        Input(placeholder="Enter an English word...", name="word", id="word-input", autofocus=True),
        Button("Look up", type="submit"),
        hx_post="/lookup",
        hx_target="#result",
        hx_indicator="#loading",
        id="lookup-form"
    )


def mk_save_button(headword: str, saved: bool):
    return Button(
        "★ Saved" if saved else "☆ Save",
        cls=f"save-button {'saved' if saved else ''}",
        hx_post="/save",
        hx_vals=json.dumps({'word': headword}),
        hx_target="#result",
        disabled=saved,
        style="margin-top: 15px;"
    )


def mk_suggestions(headword: str, invalid: InvalidWord):
    return Div(
        P(f"\"{headword}\" doesn't look like a valid word.", style="color: var(--pico-muted-color);"),
        Div(
            P("Did you mean:"),
            *[Button(s, hx_post="/lookup", hx_vals=json.dumps({'word': s}), hx_target="#result", cls="secondary compact")
              for s in invalid.suggestions]
        ) if invalid.suggestions else None,
        cls="suggestions"
    )


def mk_flashcard(card, policy, answer_revealed: bool = False):
    """Create a flashcard for the card on screen"""
    if not answer_revealed:
        return Card(
            H3(card.headword, style="text-align: center; margin-bottom: 20px;"),
            Button(
                "Show Answer",
                hx_post="/review/reveal",
                hx_target="closest .flashcard",
                hx_swap="outerHTML",
                style="display: block; margin: 0 auto;"
            ),
            cls="flashcard",
            style="margin: 0 auto; max-width: 500px;"
        )
    return Card(
        mk_lexical(card.headword, card.lexical_data),
        Div(
            *[Button(RATING_LABELS[r.value], hx_post=f"/review/rate/{r.value}", hx_target="#review-area",
                     hx_disabled_elt="this", cls=f"rate-{r.value}")
              for r in policy.ratings],
            style="display: flex; justify-content: center; gap: 10px;"
        ),
        cls="flashcard",
        style="margin: 0 auto; max-width: 500px;"
    )


def mk_review_area(review: ReviewSession, card=None, message=None):
    if review.state == SessionState.EMPTY:
        body = Div(
            H3("All caught up!"),
            P("You've reviewed all your due cards. Add more words or check back later.",
              style="color: var(--pico-muted-color);"),
            Button("Check again", hx_post="/review/recheck", hx_target="#review-area", cls="outline"),
            style="text-align: center;"
        )
    elif card is not None:
        remaining = review.remaining
        body = Div(
            P(f"{remaining} card{'s' if remaining != 1 else ''} due",
              style="text-align: center; color: var(--pico-muted-color); margin: 20px 0 5px;"),
            mk_flashcard(card, review.policy),
        )
    else:
        body = Button("Start Review", hx_post="/review/start", hx_target="#review-area", cls="review-button")
    return Div(mk_error(message) if message else None, body, id="review-area")


def create_app(config=None, store=None, provider=None, max_reviews=MAX_REVIEW_SESSIONS):
    config = config or load_config()
    store = store or VocabularyStore(init_db(config.db_path))
    provider = provider or get_provider(config)
    policy = get_policy(config.scheduler)

    async def close_provider():
        close = getattr(provider, 'close', None)
        if close is not None:
            await close()

    app, rt = fast_app(secret_key=config.session_secret, on_shutdown=[close_provider])
    app.store = store
    # One review session per browser, looked up by an id kept in its cookie
    reviews = OrderedDict()
    app.reviews = reviews

    def review_for(session) -> ReviewSession:
        key = session.setdefault('review_id', uuid.uuid4().hex)
        if key in reviews:
            reviews.move_to_end(key)
            return reviews[key]
        queue = SessionQueue(store, batch_size=config.queue_batch_size)
        reviews[key] = ReviewSession(store, policy, queue=queue)
        while len(reviews) > max_reviews:
            _, stale = reviews.popitem(last=False)
            stale.close()
            logger.debug("Dropped least recently used review session")
        return reviews[key]

    @rt('/')
    def get():
        return Title("Vocabulary"), Container(
            Link(href="/static/styles.css", rel="stylesheet"),
            H2("Look up a word"),
            mk_lookup_form(),
            Span("Looking up... ", id="loading", cls="htmx-indicator"),
            Div(id="result"),
            Nav(A("My Deck", href="/deck"), A("Review", href="/review"))
        )

    async def lookup_word(word: str, refresh: bool = False):
        """Returns (headword, lexical data, already saved, error fragment)."""
        headword = normalize_headword(word)
        if not headword:
            return headword, None, False, mk_error("Please enter a word")
        try:
            result = await provider.lookup(headword, force_refresh=refresh)
        except LookupFailed as e:
            logger.warning("Lookup of %r failed: %s", headword, e)
            return headword, None, False, mk_error("Failed to look up word. Please try again later.")
        if isinstance(result, InvalidWord):
            return headword, None, False, mk_suggestions(headword, result)
        try:
            saved = await store.find_by_headword(headword) is not None
        except StoreUnavailable:
            saved = False
        return headword, result, saved, None

    @rt('/lookup')
    async def post(word: str = '', refresh: bool = False):
        headword, lexical, saved, error = await lookup_word(word, refresh)
        if error is not None:
            return error
        return Div(
            mk_lexical(headword, lexical, mk_save_button(headword, saved)),
            Button("↻ Refresh", hx_post="/lookup", hx_vals=json.dumps({'word': headword, 'refresh': 'true'}),
                   hx_target="#result", cls="secondary compact"),
        )

    @rt('/save')
    async def post(word: str = ''):
        headword, lexical, saved, error = await lookup_word(word)
        if error is not None:
            return error
        if not saved:
            try:
                await store.create(headword, lexical)
            except StoreUnavailable:
                return mk_error("Failed to save word. Please try again later.")
        return mk_lexical(headword, lexical, mk_save_button(headword, True))

    @rt('/review')
    def get(session):
        review = review_for(session)
        return Title("Review"), Container(
            Link(href="/static/styles.css", rel="stylesheet"),
            H2("Review"),
            A("← Back to Deck", href="/deck", cls="back-link"),
            mk_review_area(review, review.card if review.state == SessionState.PRESENTING else None)
        )

    @rt('/review/start')
    async def post(session):
        review = review_for(session)
        review.reset()
        try:
            card = await review.start()
        except StoreUnavailable:
            return mk_review_area(review, message="Failed to load cards. Please try again later.")
        return mk_review_area(review, card)

    @rt('/review/reveal')
    def post(session):
        review = review_for(session)
        if review.state != SessionState.PRESENTING:
            return mk_error("Review session expired")
        return mk_flashcard(review.card, review.policy, answer_revealed=True)

    @rt('/review/rate/{rating}')
    async def post(rating: str, session):
        review = review_for(session)
        try:
            card = await review.rate(rating)
        except SessionStateError:
            return mk_review_area(review, review.card, message="Review session expired")
        except ValueError as e:
            return mk_review_area(review, review.card, message=str(e))
        except StoreUnavailable:
            # Retrying either re-rates the same card or reloads the next one
            if review.state == SessionState.PRESENTING:
                return mk_review_area(review, review.card, message="Failed to update progress. Please try again.")
            return Div(mk_error("Failed to load cards."),
                       Button("Retry", hx_post="/review/retry", hx_target="#review-area"), id="review-area")
        return mk_review_area(review, card)

    @rt('/review/retry')
    async def post(session):
        review = review_for(session)
        try:
            card = await review.advance()
        except (StoreUnavailable, SessionStateError):
            return mk_review_area(review, review.card, message="Failed to load cards. Please try again later.")
        return mk_review_area(review, card)

    @rt('/review/recheck')
    async def post(session):
        review = review_for(session)
        try:
            card = await review.recheck()
        except SessionStateError:
            return mk_review_area(review, review.card)
        except StoreUnavailable:
            return mk_review_area(review, message="Failed to load cards. Please try again later.")
        return mk_review_area(review, card)

    @rt('/review/end')
    def post(session):
        review = reviews.pop(session.get('review_id'), None)
        if review is not None:
            review.close()
        return Div(
            Button("Start Review", hx_post="/review/start", hx_target="#review-area", cls="review-button"),
            id="review-area"
        )

    saved_words.setup_routes(app, store)
    return app


config = load_config()
logging.basicConfig(
    level=config.log_level,
    format="%(asctime)s %(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
app = create_app(config)

serve()
