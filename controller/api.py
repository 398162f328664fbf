"""
Controller REST API for the Static Route Agent.

This module implements the FastAPI application that stores static route
intents, serves them to the agents running on each node and collects the
per-node status the agents report back.
"""

import logging
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException, Query

from controller.intent_store import IntentStore
from models import IntentList, NodeRouteStatus, RouteIntent


logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Static Route Controller API",
    description="Declarative static route intents for cluster nodes",
    version="1.0.0"
)

# Initialize global components
intent_store = IntentStore()


@app.put("/api/v1/intents/{name}", response_model=RouteIntent, status_code=200)
async def put_intent(name: str, intent: RouteIntent) -> RouteIntent:
    """
    Create or update a static route intent.

    Args:
        name: Intent name; must match the body's name
        intent: RouteIntent definition

    Returns:
        The stored intent with its current generation

    Raises:
        HTTPException 400: If the path and body names differ
        HTTPException 422: If the body is invalid (handled by FastAPI)

    Example Request:
        PUT /api/v1/intents/backend-net
        {"name": "backend-net", "subnet": "192.168.1.0/24", "gateway": "10.0.0.1"}
    """
    if intent.name != name:
        raise HTTPException(
            status_code=400,
            detail=f"Intent name mismatch: path '{name}', body '{intent.name}'"
        )

    stored = intent_store.upsert(intent)
    logger.info(f"Stored intent {name}: {stored.subnet} via {stored.gateway or 'auto'} "
                f"(generation {stored.generation})")
    return stored


@app.get("/api/v1/intents", response_model=IntentList, status_code=200)
async def list_intents(
    node: Optional[str] = Query(None, description="Only intents targeting this node")
) -> IntentList:
    """
    List route intents, optionally scoped to one node.

    Example Response:
        {"intents": [{"name": "backend-net", "subnet": "192.168.1.0/24",
                      "gateway": "10.0.0.1", "node": null, "generation": 1}]}
    """
    return IntentList(intents=intent_store.list_for_node(node))


@app.get("/api/v1/intents/{name}", response_model=RouteIntent, status_code=200)
async def get_intent(name: str) -> RouteIntent:
    intent = intent_store.get(name)
    if intent is None:
        raise HTTPException(status_code=404, detail=f"Intent {name} not found")
    return intent


@app.delete("/api/v1/intents/{name}", status_code=200)
async def delete_intent(name: str):
    """
    Delete an intent. Agents retract the route on their next watch cycle.

    Raises:
        HTTPException 404: If the intent does not exist
    """
    if intent_store.delete(name) is None:
        raise HTTPException(status_code=404, detail=f"Intent {name} not found")
    logger.info(f"Deleted intent {name}")
    return {"status": "ok"}


@app.put("/api/v1/intents/{name}/status", status_code=200)
async def put_status(name: str, status: NodeRouteStatus):
    """
    Record the status an agent reports for an intent on its node.

    Raises:
        HTTPException 404: If the intent does not exist
    """
    if not intent_store.set_status(name, status):
        raise HTTPException(status_code=404, detail=f"Intent {name} not found")

    if status.state == "applied":
        logger.info(f"Intent {name} applied on {status.hostname}")
    else:
        logger.warning(f"Intent {name} {status.state} on {status.hostname}: {status.error}")
    return {"status": "ok"}


@app.get("/api/v1/intents/{name}/status", status_code=200)
async def get_status(name: str) -> Dict[str, NodeRouteStatus]:
    if intent_store.get(name) is None:
        raise HTTPException(status_code=404, detail=f"Intent {name} not found")
    return intent_store.get_status(name)


@app.delete("/api/v1/intents/{name}/status/{node}", status_code=200)
async def delete_status(name: str, node: str):
    """Clear one node's status entry (the route was retracted there)."""
    removed = intent_store.clear_status(name, node)
    return {"status": "ok", "removed": removed}


@app.delete("/api/v1/nodes/{node}", status_code=200)
async def remove_node(node: str):
    """
    Prune every status entry of a node that left the cluster.

    Example Response:
        {"status": "ok", "pruned": ["backend-net"]}
    """
    pruned = intent_store.remove_node(node)
    logger.info(f"Removed node {node} from {len(pruned)} intent statuses")
    return {"status": "ok", "pruned": pruned}


@app.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns basic system status information.
    """
    return {
        "status": "healthy",
        "intent_count": intent_store.get_intent_count()
    }


def main():
    """Run the controller with uvicorn."""
    import argparse

    import uvicorn

    from config.parser import ConfigurationError, ControllerConfig

    parser = argparse.ArgumentParser(description="Run the static route controller")
    parser.add_argument("--config", help="Path to the controller YAML configuration")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    host, port = "0.0.0.0", 8000
    if args.config:
        try:
            config = ControllerConfig.from_file(args.config)
        except ConfigurationError as e:
            logger.error(f"Failed to load configuration: {e}")
            raise SystemExit(1)
        host, port = config.listen_address, config.port

    uvicorn.run(app, host=host, port=port)


# For running the server directly
if __name__ == "__main__":
    main()
