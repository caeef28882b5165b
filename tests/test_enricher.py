import asyncio

from enrichproxy.intent.extractor import Intent
from enrichproxy.models.chat import ChatRequest
from enrichproxy.pipeline.composer import Composer
from enrichproxy.pipeline.enricher import STAGE_POLICY, Enricher, EnrichmentMetadata
from enrichproxy.retrieval.reranker import Reranker
from enrichproxy.retrieval.types import ContextChunk


def _chunk(chunk_id: str, score: float) -> ContextChunk:
    return ContextChunk(id=chunk_id, source_id=chunk_id, source_type="doc", text=f"about {chunk_id}", score=score)


class FakeExtractor:
    def __init__(self, intent=None, error=None, delay=0.0):
        self.intent = intent or Intent(intent_type="question", entities=["go"])
        self.error = error
        self.delay = delay
        self.queries = []

    async def extract(self, query):
        self.queries.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.intent


class FakeRetriever:
    def __init__(self, chunks=None, error=None):
        self.chunks = chunks if chunks is not None else []
        self.error = error
        self.calls = []

    async def retrieve_for_intent(self, query, intent, top_k):
        self.calls.append((query, intent, top_k))
        if self.error:
            raise self.error
        return self.chunks[:top_k]


class FakeProfile:
    def __init__(self, summary="User: engineer.", error=None):
        self.summary = summary
        self.error = error

    async def get_summary(self):
        if self.error:
            raise self.error
        return self.summary


class ReverseReranker(Reranker):
    def __init__(self):
        self.seen = None

    async def rerank(self, query, chunks):
        self.seen = list(chunks)
        return list(reversed(chunks))


class FailingReranker(Reranker):
    async def rerank(self, query, chunks):
        raise RuntimeError("rerank engine down")


class BrokenComposer(Composer):
    def compose_with_selection(self, request, chunks, profile_summary):
        raise RuntimeError("boom")


def _request() -> ChatRequest:
    return ChatRequest.model_validate({
        "model": "openai/gpt-4o",
        "messages": [
            {"role": "user", "content": "first question"},
            {"role": "assistant", "content": "answer"},
            {"role": "user", "content": "what about go?"},
        ],
    })


def _enricher(**overrides) -> Enricher:
    parts = dict(
        extractor=FakeExtractor(),
        retriever=FakeRetriever([_chunk(f"c{i}", 1.0 - i / 100) for i in range(30)]),
        profile=FakeProfile(),
        composer=Composer(),
    )
    parts.update(overrides)
    return Enricher(**parts)


def test_full_pipeline_enriches_request():
    enricher = _enricher()

    out, meta = asyncio.run(enricher.enrich(_request()))

    assert isinstance(meta, EnrichmentMetadata)
    assert meta.intent_extracted is True
    assert meta.chunks_used == ["c0", "c1", "c2", "c3", "c4"]
    assert meta.enrichment_duration_ms >= meta.reranking_duration_ms >= 0
    assert out.messages[0]["role"] == "system"
    assert "[User Profile]\nUser: engineer." in out.messages[0]["content"]
    assert out.messages[1:] == _request().messages


def test_uses_last_user_message_and_candidate_pool_size():
    extractor = FakeExtractor()
    retriever = FakeRetriever([_chunk("a", 0.5)])
    enricher = _enricher(extractor=extractor, retriever=retriever, top_k=3, candidate_multiplier=4)

    asyncio.run(enricher.enrich(_request()))

    assert extractor.queries == ["what about go?"]
    query, intent, pool = retriever.calls[0]
    assert query == "what about go?"
    assert intent.entities == ["go"]
    assert pool == 12


def test_trims_to_top_k_after_reranking():
    reranker = ReverseReranker()
    enricher = _enricher(reranker=reranker, top_k=2, candidate_multiplier=3)

    _, meta = asyncio.run(enricher.enrich(_request()))

    # The reranker saw the whole pool, not a pre-trimmed list
    assert len(reranker.seen) == 6
    # Reranked head is c5, c4; composition orders them by score
    assert meta.chunks_used == ["c4", "c5"]


def test_rerank_failure_falls_back_to_retrieval_order():
    enricher = _enricher(reranker=FailingReranker(), top_k=3)

    _, meta = asyncio.run(enricher.enrich(_request()))

    assert meta.chunks_used == ["c0", "c1", "c2"]


def test_intent_failure_degrades_to_empty_intent():
    retriever = FakeRetriever([_chunk("a", 0.5)])
    enricher = _enricher(extractor=FakeExtractor(error=RuntimeError("ollama down")), retriever=retriever)

    out, meta = asyncio.run(enricher.enrich(_request()))

    assert meta.intent_extracted is False
    assert retriever.calls[0][1] == Intent()
    assert meta.chunks_used == ["a"]
    assert out.messages[0]["role"] == "system"


def test_intent_timeout_is_bounded():
    enricher = _enricher(extractor=FakeExtractor(delay=5.0), intent_timeout=0.05)

    elapsed = asyncio.run(_timed(enricher))

    assert elapsed < 2.0


async def _timed(enricher):
    loop = asyncio.get_running_loop()
    start = loop.time()
    _, meta = await enricher.enrich(_request())
    assert meta.intent_extracted is False
    assert meta.chunks_used
    return loop.time() - start


def test_retrieval_failure_still_injects_profile():
    enricher = _enricher(retriever=FakeRetriever(error=ConnectionError("no store")))

    out, meta = asyncio.run(enricher.enrich(_request()))

    assert meta.chunks_used == []
    content = out.messages[0]["content"]
    assert content.startswith("[User Profile]")
    assert "[Retrieved Context]" not in content


def test_profile_failure_still_injects_context():
    enricher = _enricher(profile=FakeProfile(error=KeyError("profile")))

    out, meta = asyncio.run(enricher.enrich(_request()))

    content = out.messages[0]["content"]
    assert "[User Profile]" not in content
    assert "[Retrieved Context]" in content
    assert len(meta.chunks_used) == 5


def test_compose_failure_returns_original_request():
    request = _request()
    enricher = _enricher(composer=BrokenComposer())

    out, meta = asyncio.run(enricher.enrich(request))

    assert out is request
    assert meta.chunks_used == []


def test_unparseable_messages_return_original_request():
    request = ChatRequest.model_validate({
        "model": "m",
        "messages": [{"role": "user", "content": [{"type": "text", "text": "hi"}]}],
    })
    enricher = _enricher()

    out, _ = asyncio.run(enricher.enrich(request))

    assert out is request


def test_no_user_message_skips_retrieval():
    retriever = FakeRetriever([_chunk("a", 0.5)])
    request = ChatRequest.model_validate({"model": "m", "messages": [{"role": "system", "content": "sys"}]})
    enricher = _enricher(
        extractor=FakeExtractor(intent=Intent()),
        retriever=retriever,
        profile=FakeProfile(summary=""),
    )

    out, meta = asyncio.run(enricher.enrich(request))

    assert retriever.calls == []
    assert out is request
    assert meta.intent_extracted is False


def test_only_composition_is_fatal():
    assert STAGE_POLICY == {
        "intent": "absorb",
        "retrieve": "absorb",
        "rerank": "absorb",
        "profile": "absorb",
        "compose": "fatal",
    }
