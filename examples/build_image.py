import asyncio
import sys
from pathlib import Path

from docker_image import (
    ClientConfig,
    HttpxTransport,
    Image,
    RichBuildSink,
    load_dockerignore,
)
from docker_image.core.exceptions import BuildFailedError, DockerImageError

# Connection settings come from DOCKER_HOST / DOCKER_API_VERSION (or .env)
config = ClientConfig.from_env()


async def build_context_dir(context_dir: Path):
    """Build an image from a directory and print its history."""
    sink = RichBuildSink()

    async with HttpxTransport.from_config(config) as transport:
        image = await Image.build_from_dir(
            transport,
            context_dir,
            options={"t": f"{context_dir.name.lower()}:latest", "rm": True},
            sink=sink,
            config=config,
            ignore=load_dockerignore(context_dir),
        )
        print(f"Built {image.id} ({sink.lines} lines of output)")

        for layer in await image.history():
            print(f"  {layer.get('CreatedBy', '')[:80]}")


async def build_inline():
    """Build an image from Dockerfile text alone."""
    async with HttpxTransport.from_config(config) as transport:
        image = await Image.build(
            transport,
            "from busybox\nrun echo hello > /hello.txt\n",
            sink=lambda text: print(text, end=""),
            config=config,
        )
        print(f"Built {image.id}")


if __name__ == "__main__":
    try:
        if len(sys.argv) > 1:
            asyncio.run(build_context_dir(Path(sys.argv[1])))
        else:
            asyncio.run(build_inline())
    except BuildFailedError as e:
        print(f"Build failed: {e.message}")
        print(e.stream_text)
        sys.exit(1)
    except DockerImageError as e:
        print(f"An error occurred: {e}")
        sys.exit(1)
