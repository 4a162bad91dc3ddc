from __future__ import annotations

from functools import lru_cache

from ragchain.app.settings import settings
from ragchain.rag.chains import ConversationalRetrievalQAChain, RetrievalQAChain
from ragchain.rag.llm import Generator, build_generator
from ragchain.rag.retriever import HTTPRetriever, InMemoryRetriever, Retriever


@lru_cache
def get_generator() -> Generator:
    return build_generator(
        settings.llm_provider,
        api_key_openai=settings.openai_api_key,
        api_key_gemini=settings.gemini_api_key,
        openai_base_url=settings.openai_base_url,
        openai_model=settings.openai_chat_model,
        gemini_model=settings.gemini_chat_model,
        ollama_base_url=settings.ollama_base_url,
        ollama_model=settings.ollama_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        timeout=settings.llm_timeout,
    )


@lru_cache
def get_retriever() -> Retriever:
    backend = settings.retriever_backend.lower().strip()
    if backend == "http":
        if not settings.retriever_url:
            raise ValueError("RAG_RETRIEVER_URL is required for the http retriever")
        return HTTPRetriever(
            url=settings.retriever_url,
            top_k=settings.top_k,
            timeout=settings.retriever_timeout,
        )
    return InMemoryRetriever(top_k=settings.top_k)


def build_qa_chain(generator: Generator, retriever: Retriever) -> RetrievalQAChain:
    return RetrievalQAChain.from_llm(
        generator,
        retriever,
        chain_type=settings.chain_type,
        qa_template=settings.qa_template,
        combine_options=settings.combine_options,
        return_source_documents=settings.return_source_documents,
    )


def build_conversational_chain(
    generator: Generator, retriever: Retriever
) -> ConversationalRetrievalQAChain:
    return ConversationalRetrievalQAChain.from_llm(
        generator,
        retriever,
        chain_type=settings.chain_type,
        question_generator_template=settings.condense_template,
        qa_template=settings.qa_template,
        combine_options=settings.combine_options,
        return_source_documents=settings.return_source_documents,
    )


@lru_cache
def get_qa_chain() -> RetrievalQAChain:
    return build_qa_chain(get_generator(), get_retriever())


@lru_cache
def get_conversational_chain() -> ConversationalRetrievalQAChain:
    return build_conversational_chain(get_generator(), get_retriever())


def reset_chain_cache() -> None:
    get_qa_chain.cache_clear()
    get_conversational_chain.cache_clear()
    get_generator.cache_clear()
    get_retriever.cache_clear()
