#!/usr/bin/env python3
from fastapi import FastAPI, UploadFile, File, HTTPException, Query
from fastapi.responses import JSONResponse, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
import logging, os
from typing import Optional

from record_stream import (DecodeError, ParseCancelledError, ReadError, SegmentError,
                           StreamingRecordParser, StreamSettings)

app = FastAPI(title="JSON-Lite Records")
logger = logging.getLogger(__name__)
settings = StreamSettings.from_env()

request_counter = Counter("json_requests_total", "Total JSON uploads")
process_duration = Histogram("json_process_seconds", "Time spent processing")
record_counter = Counter("json_records_total", "Records decoded from uploads")
error_counter = Counter("json_parse_errors_total", "Failed uploads by error kind", ["kind"])


@app.get("/health", tags=["ops"])
def health():
    return {"status": "healthy"}


@app.get("/metrics", tags=["ops"])
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/process/file", tags=["process"])
async def process_file(file: UploadFile = File(...),
                       field: Optional[str] = Query(None, description="array field holding the records"),
                       bare_array: bool = Query(False, description="records sit in a top-level array"),
                       chunk_size: Optional[int] = Query(None, ge=1)):
    """Stream the upload straight through the record parser; nothing is spooled to disk by us."""
    request_counter.inc()
    array_field = None if bare_array else (field or settings.array_field)
    parser = StreamingRecordParser.from_settings(settings, chunk_size=chunk_size or settings.chunk_size,
                                                 array_field=array_field)
    recs = 0
    with process_duration.time():
        try:
            async for _ in parser.aiter_records(file):
                recs += 1
        except (SegmentError, DecodeError) as e:
            error_counter.labels(kind=type(e).__name__).inc()
            logger.warning(f"rejected upload {file.filename}: {e}")
            raise HTTPException(status_code=422, detail=str(e))
        except ParseCancelledError as e:
            error_counter.labels(kind=type(e).__name__).inc()
            raise HTTPException(status_code=504, detail=str(e))
        except ReadError as e:
            error_counter.labels(kind=type(e).__name__).inc()
            raise HTTPException(status_code=500, detail=str(e))
    record_counter.inc(recs)
    size = file.size if file.size is not None else parser.bytes_read
    return JSONResponse({"filename": file.filename, "bytes": size, "records": recs})


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))
