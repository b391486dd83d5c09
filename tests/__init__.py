"""
Test suite for the Semantic Knowledge-Graph Engine.

Organized by module:
- test_config.py - Settings and logging helpers
- test_feature_extractor.py - Hashed TF-IDF features
- test_similarity_index.py - Cosine ranking
- test_graph_store.py - Snapshot graph store
- test_clustering.py - Threshold clustering
- test_enrichment.py - Markdown enrichment
- test_session_manager.py - Conversation sessions
- test_logic_flow.py - Retrieval plans
- test_sweeper.py - Background expiry sweep
- test_engine.py - Engine facade
- test_query_script.py - Command line query tool
"""

# Test fixtures are provided in conftest.py
