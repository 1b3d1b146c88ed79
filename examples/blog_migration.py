"""
Blog migration example

This example runs the three jobs of examples/blog_migration/migration.yml:
- authors: CSV -> SQLite, deduplicated on e-mail with an upsert
- posts: JSON -> SQLite + CSV, author ids looked up in the authors ledger
- post_tags: JSON -> JSON, post ids looked up in the posts ledger
"""
import sys
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from batchflow.common.config import Config
from batchflow.common.logging import setup_logging
from batchflow.common.models import JobStatus
from batchflow.ledger.registry import LedgerRegistry
from batchflow.orchestration.pipeline import Pipeline


def main():
    """Run the blog migration"""

    logger = setup_logging(level="INFO")
    logger.info("=" * 60)
    logger.info("Starting Blog Migration")
    logger.info("=" * 60)

    config_file = Path(__file__).parent / "blog_migration" / "migration.yml"
    config = Config(str(config_file))

    logger.info(f"Config: {config_file}")
    logger.info(f"Ledgers: {config.ledger_root}")
    logger.info("")

    try:
        results = Pipeline(config).run()
    except Exception as e:
        logger.error(f"Migration failed with error: {e}")
        raise

    logger.info("")
    logger.info("=" * 60)
    logger.info("Migration Results")
    logger.info("=" * 60)

    for result in results:
        logger.info(f"{result.name}: {result.status.value}")
        logger.info(f"  - Extracted: {result.rows_extracted}")
        logger.info(f"  - Transformed: {result.rows_transformed}")
        logger.info(f"  - Loaded: {result.rows_loaded}")
        logger.info(f"  - Duration: {result.duration_seconds:.2f}s")
        for error in result.errors:
            logger.info(f"  - Error ({error.phase}): {error.message}")

    if all(r.status == JobStatus.DONE for r in results):
        posts = LedgerRegistry(config).get("posts")
        logger.info("")
        logger.info(f"Posts ledger ({len(posts)} entries):")
        for entry in posts.entries:
            logger.info(f"  source {entry['source.id']} -> post {entry['post.id']}")

    logger.info("=" * 60)
    logger.info("")
    logger.info("To view the data, run:")
    logger.info(f"  sqlite3 {config.resolve_path('./output/blog.db')} 'SELECT * FROM posts;'")


if __name__ == "__main__":
    main()
