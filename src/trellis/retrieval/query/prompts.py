QUERY_EXPANSION_PROMPT = """You rewrite search queries for a document retrieval system.

Produce up to {count} alternative phrasings of the query below. Each variant should:
- Preserve the original intent and any named entities, numbers, or dates
- Use different vocabulary or structure than the original
- Be a standalone search query, not an answer

Query: {query}"""
