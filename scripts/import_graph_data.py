"""
Script to import a bot and its conversation graphs into MongoDB.
The input file holds {"bot": {...}, "graphs": [...]} as the flow builder exports it.
Graphs that fail structural validation are reported and skipped.
"""
import argparse
import asyncio
import json
import sys
import os

# Add src directory to path to import modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils
from database.flow_db import FlowDB
from services.flow_validation_service import FlowValidationService
from models.bot_data import BotData
from models.flow_data import FlowGraph


async def import_graph_data(path: str) -> int:
    """Import bot and graph data into MongoDB. Returns the number of graphs saved."""
    log_util = LogUtil()
    environment_utils = EnvironmentUtils(log_util=log_util)
    flow_db = FlowDB(log_util=log_util, environment_utils=environment_utils)
    validation_service = FlowValidationService(log_util=log_util)

    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)

    try:
        await flow_db.ensure_indexes()

        bot = BotData.model_validate(data["bot"])
        await flow_db.save_bot(bot)
        print(f"✅ Bot saved: {bot.name} (id: {bot.id})")

        saved = 0
        for graph_data in data.get("graphs", []):
            graph_data.setdefault("bot_id", bot.id)
            report = validation_service.validate_document(graph_data)
            for warning in report.warnings:
                print(f"⚠️  {report.graph_id}: {warning.message}")
            if not report.is_valid:
                for error in report.errors:
                    print(f"❌ {report.graph_id}: {error.message}")
                continue

            graph = FlowGraph.model_validate(graph_data)
            await flow_db.save_graph(graph)
            saved += 1
            print(f"✅ Graph saved: {graph.name} (id: {graph.id}, {len(graph.nodes)} nodes, {len(graph.edges)} edges)")

        print(f"\n✅ Imported {saved} of {len(data.get('graphs', []))} graph(s)")
        return saved
    finally:
        flow_db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Import a bot and its graphs into MongoDB")
    parser.add_argument("path", help="JSON file with bot and graphs")
    args = parser.parse_args()

    print("=" * 80)
    print("Graph Data Import Script")
    print("=" * 80)

    asyncio.run(import_graph_data(args.path))
