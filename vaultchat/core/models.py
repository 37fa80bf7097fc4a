documents_sql = """
CREATE TABLE documents (
    path TEXT PRIMARY KEY,
    collection TEXT NOT NULL,
    doc_id TEXT NOT NULL,
    data JSONB NOT NULL DEFAULT '{}'::jsonb,
    updated_at TIMESTAMPTZ DEFAULT now()
);

CREATE INDEX documents_collection_idx ON documents (collection);

-- Live listeners subscribe through Supabase Realtime
ALTER PUBLICATION supabase_realtime ADD TABLE documents;
"""

commit_batch_sql = """
CREATE OR REPLACE FUNCTION commit_batch(ops JSONB)
RETURNS VOID
LANGUAGE plpgsql
AS $$
DECLARE
    op JSONB;
BEGIN
    -- Runs inside the caller's transaction: every op lands or none does
    FOR op IN SELECT * FROM jsonb_array_elements(ops) LOOP
        IF op->>'kind' = 'set' AND (op->>'merge')::boolean THEN
            INSERT INTO documents (path, collection, doc_id, data)
            VALUES (op->>'path', op->>'collection', op->>'doc_id', op->'data')
            ON CONFLICT (path) DO UPDATE
                SET data = documents.data || EXCLUDED.data, updated_at = now();

        ELSIF op->>'kind' = 'set' THEN
            INSERT INTO documents (path, collection, doc_id, data)
            VALUES (op->>'path', op->>'collection', op->>'doc_id', op->'data')
            ON CONFLICT (path) DO UPDATE
                SET data = EXCLUDED.data, updated_at = now();

        ELSIF op->>'kind' = 'update' THEN
            UPDATE documents
                SET data = data || (op->'data'), updated_at = now()
                WHERE path = op->>'path';
            IF NOT FOUND THEN
                RAISE EXCEPTION 'No document to update: %', op->>'path'
                    USING ERRCODE = 'P0002';
            END IF;

        ELSIF op->>'kind' = 'delete' THEN
            DELETE FROM documents WHERE path = op->>'path';

        ELSE
            RAISE EXCEPTION 'Unknown write kind: %', op->>'kind';
        END IF;
    END LOOP;
END;
$$;
"""
