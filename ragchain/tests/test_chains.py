from __future__ import annotations

import asyncio

import pytest

from ragchain.rag.chains import (
    SOURCE_DOCUMENTS_KEY,
    ConversationalRetrievalQAChain,
    RetrievalQAChain,
)
from ragchain.rag.errors import GenerationError, MissingInputKeyError, RetrievalError, UnknownChainTypeError
from ragchain.rag.types import Document
from ragchain.tests.fakes import FakeGenerator, FakeRetriever

pytestmark = pytest.mark.anyio

BREYER_QUESTION = "What did the president say about Justice Breyer?"


class FailingRetriever:
    async def get_relevant_documents(self, query: str) -> list[Document]:
        raise RetrievalError("index unavailable")


async def test_stuff_scenario_end_to_end(breyer_documents: list[Document]) -> None:
    generator = FakeGenerator("He thanked Justice Breyer for his service.")
    retriever = FakeRetriever(breyer_documents)
    chain = RetrievalQAChain.from_llm(generator, retriever)

    result = await chain.call({"query": BREYER_QUESTION})

    assert result == {"result": "He thanked Justice Breyer for his service."}
    assert retriever.queries == [BREYER_QUESTION]
    assert len(generator.prompts) == 1
    prompt = generator.prompts[0]
    assert BREYER_QUESTION in prompt
    for document in breyer_documents:
        assert document.content in prompt


async def test_empty_retrieval_still_answers() -> None:
    generator = FakeGenerator("I don't know.")
    chain = RetrievalQAChain.from_llm(generator, FakeRetriever([]))

    result = await chain.call({"query": "What is the travel policy?"})

    assert result["result"] == "I don't know."


async def test_source_documents_toggle(breyer_documents: list[Document]) -> None:
    with_sources = RetrievalQAChain.from_llm(
        FakeGenerator(), FakeRetriever(breyer_documents), return_source_documents=True
    )
    without_sources = RetrievalQAChain.from_llm(FakeGenerator(), FakeRetriever(breyer_documents))

    included = await with_sources.call({"query": "q"})
    omitted = await without_sources.call({"query": "q"})

    assert included[SOURCE_DOCUMENTS_KEY] == breyer_documents
    assert SOURCE_DOCUMENTS_KEY not in omitted
    assert with_sources.output_keys == ["result", SOURCE_DOCUMENTS_KEY]


async def test_missing_query_key_makes_no_calls() -> None:
    generator = FakeGenerator()
    retriever = FakeRetriever([Document(content="x")])
    chain = RetrievalQAChain.from_llm(generator, retriever)

    with pytest.raises(MissingInputKeyError) as excinfo:
        await chain.call({"question": "wrong key"})

    assert excinfo.value.keys == ["query"]
    assert retriever.queries == []
    assert generator.prompts == []


async def test_custom_keys() -> None:
    chain = RetrievalQAChain.from_llm(
        FakeGenerator("answer"),
        FakeRetriever([]),
        input_key="ask",
        output_key="reply",
    )

    assert chain.input_keys == ["ask"]
    assert await chain.call({"ask": "q"}) == {"reply": "answer"}


def test_unknown_chain_type_fails_at_construction() -> None:
    generator = FakeGenerator()
    retriever = FakeRetriever([])

    with pytest.raises(UnknownChainTypeError):
        RetrievalQAChain.from_llm(generator, retriever, chain_type="bogus")
    with pytest.raises(UnknownChainTypeError):
        ConversationalRetrievalQAChain.from_llm(generator, retriever, chain_type="bogus")

    assert generator.prompts == []
    assert retriever.queries == []


def test_serialization_is_unsupported() -> None:
    chain = RetrievalQAChain.from_llm(FakeGenerator(), FakeRetriever([]))

    with pytest.raises(NotImplementedError):
        chain.serialize()
    with pytest.raises(NotImplementedError):
        RetrievalQAChain.deserialize({})
    with pytest.raises(NotImplementedError):
        ConversationalRetrievalQAChain.deserialize({})


async def test_collaborator_errors_propagate() -> None:
    chain = RetrievalQAChain.from_llm(FakeGenerator(), FailingRetriever())
    with pytest.raises(RetrievalError):
        await chain.call({"query": "q"})

    def fail(prompt: str) -> str:
        raise GenerationError("timeout")

    chain = RetrievalQAChain.from_llm(FakeGenerator(fail), FakeRetriever([]))
    with pytest.raises(GenerationError):
        await chain.call({"query": "q"})


async def test_map_reduce_pipeline(breyer_documents: list[Document]) -> None:
    def responder(prompt: str) -> str:
        if "FINAL ANSWER:" in prompt:
            return "final"
        return "extract"

    generator = FakeGenerator(responder)
    chain = RetrievalQAChain.from_llm(
        generator, FakeRetriever(breyer_documents), chain_type="map_reduce_documents_chain"
    )

    result = await chain.call({"query": BREYER_QUESTION})

    assert result == {"result": "final"}
    assert len(generator.prompts) == len(breyer_documents) + 1


async def test_concurrent_calls_share_one_chain() -> None:
    generator = FakeGenerator(lambda prompt: prompt.rsplit("Question: ", 1)[1].split("\n")[0])
    chain = RetrievalQAChain.from_llm(generator, FakeRetriever([]))

    results = await asyncio.gather(*(chain.run(f"question {idx}") for idx in range(5)))

    assert [result.answer for result in results] == [f"question {idx}" for idx in range(5)]


async def test_conversational_empty_history_skips_rewrite(
    breyer_documents: list[Document],
) -> None:
    generator = FakeGenerator("answer")
    retriever = FakeRetriever(breyer_documents)
    chain = ConversationalRetrievalQAChain.from_llm(generator, retriever)

    result = await chain.call({"question": BREYER_QUESTION, "chat_history": []})

    assert result == {"result": "answer"}
    assert retriever.queries == [BREYER_QUESTION]
    assert len(generator.prompts) == 1
    assert "standalone question" not in generator.prompts[0]


async def test_conversational_history_rewrites_once_before_retrieval() -> None:
    order: list[str] = []

    def responder(prompt: str) -> str:
        if "Standalone question:" in prompt:
            order.append("rewrite")
            return "Was the president's tribute to Justice Breyer kind?"
        order.append("answer")
        return "Yes."

    class OrderedRetriever(FakeRetriever):
        async def get_relevant_documents(self, query: str) -> list[Document]:
            order.append("retrieve")
            return await super().get_relevant_documents(query)

    generator = FakeGenerator(responder)
    retriever = OrderedRetriever([Document(content="Justice Breyer, thank you.")])
    chain = ConversationalRetrievalQAChain.from_llm(generator, retriever)
    history = BREYER_QUESTION + " He thanked him for his service."

    result = await chain.call({"question": "Was that nice?", "chat_history": history})

    assert result == {"result": "Yes."}
    assert order == ["rewrite", "retrieve", "answer"]
    assert retriever.queries == ["Was the president's tribute to Justice Breyer kind?"]
    assert "Was the president's tribute to Justice Breyer kind?" in generator.prompts[1]


async def test_conversational_reports_all_missing_keys() -> None:
    generator = FakeGenerator()
    retriever = FakeRetriever([])
    chain = ConversationalRetrievalQAChain.from_llm(generator, retriever)

    with pytest.raises(MissingInputKeyError) as excinfo:
        await chain.call({})
    assert excinfo.value.keys == ["question", "chat_history"]

    with pytest.raises(MissingInputKeyError) as excinfo:
        await chain.call({"question": "q"})
    assert excinfo.value.keys == ["chat_history"]

    assert generator.prompts == []
    assert retriever.queries == []


async def test_conversational_history_reaches_answer_prompt_when_enabled() -> None:
    qa_template = "History:\n{chat_history}\nContext:\n{context}\nQ: {question}"
    history = [("Who spoke?", "The president.")]

    def responder(prompt: str) -> str:
        return "standalone" if "Standalone question:" in prompt else "answer"

    enabled_generator = FakeGenerator(responder)
    enabled = ConversationalRetrievalQAChain.from_llm(
        enabled_generator, FakeRetriever([]), qa_template=qa_template
    )
    disabled_generator = FakeGenerator(responder)
    disabled = ConversationalRetrievalQAChain.from_llm(
        disabled_generator,
        FakeRetriever([]),
        qa_template=qa_template,
        pass_history_to_answer=False,
    )

    await enabled.run("And then?", history)
    await disabled.run("And then?", history)

    assert "Human: Who spoke?" in enabled_generator.prompts[-1]
    assert "Human: Who spoke?" not in disabled_generator.prompts[-1]
    assert disabled_generator.prompts[-1].endswith("Q: standalone")


async def test_conversational_returns_sources_and_rewritten_question(
    breyer_documents: list[Document],
) -> None:
    generator = FakeGenerator(
        lambda prompt: "standalone" if "Standalone question:" in prompt else "answer"
    )
    chain = ConversationalRetrievalQAChain.from_llm(
        generator, FakeRetriever(breyer_documents), return_source_documents=True
    )

    result = await chain.run("follow up", "Human: earlier")
    envelope = await chain.call({"question": "follow up", "chat_history": "Human: earlier"})

    assert result.question == "standalone"
    assert result.source_documents == breyer_documents
    assert envelope[SOURCE_DOCUMENTS_KEY] == breyer_documents


async def test_answer_text_is_not_trimmed(breyer_documents: list[Document]) -> None:
    chain = RetrievalQAChain.from_llm(
        FakeGenerator(" He thanked him.\n"), FakeRetriever(breyer_documents)
    )

    result = await chain.run(BREYER_QUESTION)

    assert result.answer == " He thanked him.\n"


def test_conversational_rejects_unsupported_condense_variables() -> None:
    generator = FakeGenerator()

    with pytest.raises(ValueError, match="unsupported variables: history"):
        ConversationalRetrievalQAChain.from_llm(
            generator, FakeRetriever([]), question_generator_template="{history} {question}"
        )

    assert generator.prompts == []
