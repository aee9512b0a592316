import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Response

from .errors import DefinitionNotFound, InvalidAxes, StructureError
from .handler.generation import GenerationHandler
from .model.error import Error as ErrorModel
from .model.generation import ContextRequest, NestRequest, ShExJRequest, ShExJResult

logger = logging.getLogger(__name__)

generation_handler: GenerationHandler


@asynccontextmanager
async def lifespan(app: FastAPI):
    global generation_handler

    # Set up
    generation_handler = GenerationHandler()

    # Let the app do its job
    yield


app = FastAPI(title="Structure ShEx", lifespan=lifespan)


@app.get("/")
async def ping():
    return "pong"


@app.post(
    "/shexj",
    tags=["ShExJ"],
    responses={400: {"error": {}}},
)
async def post_shexj(data: ShExJRequest, response: Response) -> ShExJResult | ErrorModel:
    """
    Generates a ShExJ schema for the StructureDefinitions and ValueSets in the sources
    """
    global generation_handler
    try:
        return await generation_handler.generate_shexj(data)
    except (InvalidAxes, StructureError) as e:
        response.status_code = 400
        return ErrorModel.from_except(e)


@app.post(
    "/context/{name}",
    tags=["JSON-LD"],
    responses={400: {"error": {}}, 404: {"error": {}}},
)
async def post_context(name: str, data: ContextRequest, response: Response) -> dict | ErrorModel:
    """
    Generates the JSON-LD context of the named StructureDefinition
    """
    global generation_handler
    try:
        return await generation_handler.generate_context(name, data)
    except DefinitionNotFound as e:
        response.status_code = 404
        return ErrorModel.from_except(e)
    except (InvalidAxes, StructureError) as e:
        response.status_code = 400
        return ErrorModel.from_except(e)


@app.post(
    "/nest",
    tags=["ShExJ"],
    responses={400: {"error": {}}},
)
async def post_nest(data: NestRequest, response: Response) -> dict | ErrorModel:
    """
    Inlines the nested-element shapes of a ShExJ schema that are referenced only once
    """
    global generation_handler
    try:
        return generation_handler.nest(data)
    except (ValueError, TypeError) as e:
        response.status_code = 400
        return ErrorModel.from_except(e)


def serve(host: str = "0.0.0.0", port: int = 8000):
    # Configure logging to show our application logs
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(levelname)s:%(name)s: %(message)s",
    )
    uvicorn.run(app, host=host, port=port, log_level="debug")


if __name__ == "__main__":
    serve()
